#!/usr/bin/env python3
"""Emit deterministic SQL for marketplace role bootstrap."""

from __future__ import annotations

import argparse


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, user_id: str | None, email: str | None, name: str | None = None) -> str:
    role_value = _quote_sql(role)

    if user_id:
        target_where = f"id = {_quote_sql(user_id)}::uuid"
    else:
        assert email is not None
        target_where = f"email = {_quote_sql(email)}"
    name_value = _quote_sql(name) if name else "coalesce(raw_user_meta_data ->> 'name', email)"

    return f"""-- Marketplace role bootstrap SQL
-- Run this in the Supabase SQL editor (or equivalent privileged Postgres session).

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {role_value})
where {target_where};

insert into user_profiles (id, name, role)
select id::text, {name_value}, {role_value}
from auth.users
where {target_where}
on conflict (id) do update set role = excluded.role;
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to assign a marketplace role to a Supabase user.")
    parser.add_argument(
        "--role",
        choices=["buyer", "farmer", "admin"],
        default="admin",
        help="Role to assign in auth.users.raw_app_meta_data.role and user_profiles.role",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    parser.add_argument("--name", help="Display name for the user profile")
    args = parser.parse_args()

    print(
        render_sql(
            role=args.role,
            user_id=args.user_id,
            email=args.email,
            name=args.name,
        )
    )


if __name__ == "__main__":
    main()
