import os

from dotenv import load_dotenv
from werkzeug.security import generate_password_hash

from db import create_client, database_operation, db_execute, fetch_one


@database_operation('reset password')
def reset_password(client, user_id, raw_password, must_change=True):
    """Set a new password for one login; returns False when the user is unknown."""
    with client.transaction() as c:
        db_execute(
            c,
            '''UPDATE users
               SET password_hash = ?, must_change_password = ?, updated_at = CURRENT_TIMESTAMP
               WHERE user_id = ?
               RETURNING id''',
            (generate_password_hash(raw_password), must_change, (user_id or '').strip()),
        )
        return fetch_one(c) is not None


def main():
    load_dotenv()
    user_id = (os.getenv("RESET_USER_ID") or "").strip()
    raw_password = os.getenv("RESET_PASSWORD") or ""
    must_change = (os.getenv("RESET_MUST_CHANGE", "1").strip().lower() in ("1", "true", "yes"))

    if not user_id:
        raise RuntimeError("RESET_USER_ID is required.")
    if len(raw_password) < 8:
        raise RuntimeError("RESET_PASSWORD is required and must be at least 8 characters.")

    if reset_password(create_client(), user_id, raw_password, must_change):
        print(f"Password reset successfully for {user_id}.")
    else:
        print(f"No user found for {user_id}.")


if __name__ == "__main__":
    main()
