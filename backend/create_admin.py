import getpass
import sys

from erp_core import init_erp_core
from erp_core.auth_service import AuthDispatcher, check_password_strength, normalize_email
from erp_core.config import settings
from erp_core.database import SessionLocal
from erp_core.errors import ERPError
from erp_core.models import Account, AccountRole
from erp_core.security import hash_password


def create_admin():
    init_erp_core()

    email = input("Company admin email: ").strip()
    name = input("Display name [Company Admin]: ").strip() or "Company Admin"
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        print("Error: passwords do not match.")
        return 1

    db = SessionLocal()
    try:
        existing = db.query(Account).filter(Account.email == normalize_email(email)).first()
        if existing:
            print(f"Account '{existing.email}' already exists. Updating password...")
            check_password_strength(password)
            existing.password_hash = hash_password(password)
            db.commit()
        else:
            print(f"Creating company admin '{email}'...")
            AuthDispatcher(db, settings).create_account(
                name=name,
                email=email,
                password=password,
                role=AccountRole.COMPANY_ADMIN,
            )
        account = db.query(Account).filter(Account.email == normalize_email(email)).first()
        print("Verification:", account.id, account.email, account.role.value, account.status.value)
        return 0
    except ERPError as e:
        print(f"Error: {e.message}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(create_admin())
