import argparse

from evcharge.services import accounts


def main(argv=None):
    p = argparse.ArgumentParser(description="Crear cuenta inicial")
    p.add_argument("--email", required=True)
    p.add_argument("--password", required=True)
    p.add_argument("--name", default="Admin")
    p.add_argument("--role", default="admin", choices=["admin", "owner", "user"])
    args = p.parse_args(argv)

    email = accounts.normalize_email(args.email)
    other = accounts.email_owner_role(email)
    if other:
        print(f"Ya existe una cuenta {other} con email {email}")
        return None

    fields = {"name": args.name}
    if args.role == "owner":
        fields["display_name"] = args.name
    doc = accounts.create_account(args.role, email, args.password, **fields)
    print(f"Usuario creado: {email} ({args.role})")
    return doc


if __name__ == "__main__":
    main()
