"""auth/ -- Identity for Lockbox: tokens, password verifiers, accounts, request binding.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/, metadata/, or ciphertext/.
api/ imports from auth/, not the other way around.
"""
