from datetime import datetime, timedelta, timezone

from licencekit import (
    KeyFamily,
    Licence,
    ValidationResult,
    from_binary,
    generate_keypair,
    load_private_key,
    load_public_key,
    sign_licence,
    to_binary,
    validate,
)

print("Generating keys")
# Production would load the vendor key, or take it from a certificate.
kp = generate_keypair(KeyFamily.RSA)

now = datetime.now(timezone.utc)
licence = Licence.create(
    None,
    now,
    now + timedelta(days=30),
    {
        "LicenceType": "Trial",
        "CustomerName": "John Doe",
        "CustomerEmail": "john.doe@contoso.com",
        "CustomerCompany": "Contoso Ltd.",
    },
)

if sign_licence(licence, load_private_key(kp.private_pem)):
    print("Signed")
else:
    print("Failed to sign")

binary_licence = to_binary(licence)

# Hand the licence to the client in binary form (XML works too).

client_licence = from_binary(binary_licence)
result = validate(client_licence, load_public_key(kp.public_pem))

if result is ValidationResult.VALID:
    print("Valid!")
else:
    print(f"Invalid: {result.name}")
