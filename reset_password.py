"""
Reset one teacher's password from the command line.

Usage:
  RESET_EMAIL=teacher@example.com RESET_PASSWORD='n3w-pass!' python reset_password.py
"""

import os

from dotenv import load_dotenv


def main():
    load_dotenv()
    email = (os.getenv("RESET_EMAIL") or "").strip().lower()
    raw_password = os.getenv("RESET_PASSWORD") or ""

    if not (os.getenv("DATABASE_URL") or "").strip():
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    if not email:
        raise RuntimeError("RESET_EMAIL is required.")
    if not raw_password:
        raise RuntimeError("RESET_PASSWORD is required.")

    import teacher_portal

    updated = teacher_portal.reset_teacher_password(email, raw_password)
    if updated:
        print(f"Password reset successfully for {email}.")
    else:
        print(f"No teacher found for {email}.")
    return updated


if __name__ == "__main__":
    main()
