"""CLI utility to create a responder user and print its API key.

Usage:
  python -m backend.responder.scripts.create_user --email ops@example.com --name "Ops" \
      --mail-token <google-oauth-access-token> --csv export.csv

With --csv the export is ingested for the new user exactly as the upload
endpoint would do it (replacing any conversations the user already has).
"""
import argparse
import secrets
from pathlib import Path

from pydantic import ValidationError

from ..db.database import SessionLocal, ensure_schema  # type: ignore
from ..models.correspondence_model import User
from ..schemas.triage import UserCreate
from ..services.correspondence_service import replace_upload
from ..services.ingest import normalize_rows, read_csv_rows
from ..services.reconstruct import reconstruct_tickets


def main():
    parser = argparse.ArgumentParser(description="Create a user for the email responder")
    parser.add_argument("--email", required=True, help="User email (unique)")
    parser.add_argument("--name", default=None)
    parser.add_argument("--mail-token", dest="mail_token", default=None, help="Gmail OAuth access token used for sending replies")
    parser.add_argument("--csv", dest="csv", default=None, help="Optional ticket export to ingest for this user")
    args = parser.parse_args()

    try:
        payload = UserCreate(email=args.email, name=args.name, mail_access_token=args.mail_token)
    except ValidationError as e:
        raise SystemExit(f"Invalid user: {e.errors()[0]['msg']}")
    if args.csv and not Path(args.csv).exists():
        raise SystemExit(f"CSV file not found: {args.csv}")

    ensure_schema()
    session = SessionLocal()
    try:
        user = session.query(User).filter(User.email == payload.email).first()
        if user:
            raise SystemExit(f"User already exists: {payload.email}")
        user = User(email=payload.email, name=payload.name, api_key=secrets.token_urlsafe(32), mail_access_token=payload.mail_access_token)
        session.add(user)
        session.commit()
        session.refresh(user)
        print(f"Created user {user.id} <{user.email}>")
        print(f"  api key: {user.api_key}")
        if args.csv:
            result = reconstruct_tickets(normalize_rows(read_csv_rows(args.csv)))
            summary = replace_upload(session, user, result.tickets, filtered=result.stats.filtered)
            print("Upload summary:")
            print(f"  created: {len(summary.created)}")
            print(f"  filtered: {summary.filtered}")
            print(f"  skipped: {summary.skipped}")
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover
    main()
