#!/usr/bin/env python3
"""Credential setup script.

Validates Plaid API credentials by creating a test link token, generates a
Fernet key for encrypting access tokens at rest, and offers to store all
secrets in the system keychain.

Usage:
    1. Sign up at https://dashboard.plaid.com/
    2. Get your client_id and secret from the Keys page
    3. Run ``python -m scripts.setup_credentials`` from ``backend/``
"""

import sys

from integrations.exceptions import PlaidError
from integrations.plaid_client import PlaidClient
from services.credential_manager import set_credential
from services.token_cipher import TokenCipher


def _offer_keychain_store(credentials: dict[str, str]) -> None:
    """Prompt the user to store credentials in the system keychain."""
    answer = input("\nStore these credentials in the system keychain? [Y/n] ").strip().lower()
    if answer in ("", "y", "yes"):
        for key, value in credentials.items():
            if set_credential(key, value):
                print(f"  Stored {key} in keychain")
            else:
                print(f"  Failed to store {key}")
    else:
        print("  Skipped keychain storage.")


def validate_credentials(client_id: str, secret: str, env: str) -> None:
    """Validate Plaid credentials by creating a throwaway link token.

    Raises:
        PlaidError: Plaid rejected the credentials or was unreachable.
    """
    client = PlaidClient(client_id=client_id, secret=secret, environment=env, webhook_url="")
    try:
        result = client.create_link_token("setup-test")
    finally:
        client.close()
    if not result.link_token:
        raise PlaidError("No link_token in response")


def main():
    """Prompt for credentials, validate them, and generate an encryption key."""
    print("Plaid Link Ledger Setup")
    print("=" * 50)
    print()
    print("To get Plaid API credentials:")
    print("  1. Sign up at https://dashboard.plaid.com/")
    print("  2. Go to Developers > Keys")
    print("  3. Copy your client_id and secret")
    print()

    client_id = input("Enter your Plaid client_id: ").strip()
    if not client_id:
        print("Error: No client_id provided")
        sys.exit(1)

    secret = input("Enter your Plaid secret: ").strip()
    if not secret:
        print("Error: No secret provided")
        sys.exit(1)

    print()
    print("Choose environment:")
    print("  1. sandbox (for testing with fake data)")
    print("  2. production (for live use)")
    env_choice = input("Enter choice (1 or 2) [1]: ").strip() or "1"
    env = {"1": "sandbox", "2": "production"}.get(env_choice, "sandbox")

    print()
    print(f"Validating credentials against {env} environment...")

    try:
        validate_credentials(client_id, secret, env)
    except PlaidError as e:
        print(f"Error: {e}")
        print()
        print("Common issues:")
        print("  - Incorrect client_id or secret")
        print("  - Wrong environment selected")
        print("  - Network connectivity issue")
        sys.exit(1)

    encryption_key = TokenCipher.generate_key()

    print()
    print("Success! Add the following to your .env file:")
    print()
    print(f"PLAID_CLIENT_ID={client_id}")
    print(f"PLAID_SECRET={secret}")
    print(f"PLAID_ENVIRONMENT={env}")
    print(f"TOKEN_ENCRYPTION_KEY={encryption_key}")

    _offer_keychain_store({
        "PLAID_CLIENT_ID": client_id,
        "PLAID_SECRET": secret,
        "TOKEN_ENCRYPTION_KEY": encryption_key,
    })

    print()
    print("Keep TOKEN_ENCRYPTION_KEY safe: losing it makes every stored")
    print("access token unreadable and all items must be re-linked.")


if __name__ == "__main__":
    main()
