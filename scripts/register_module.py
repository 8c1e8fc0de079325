#!/usr/bin/env python3
"""Emit SQL registering a machine module (for example the expiry worker)."""

from __future__ import annotations

import argparse
import hashlib
import secrets


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, module_id: str, api_key: str, scopes: list[str], name: str | None = None) -> str:
    key_hash = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    scope_array = "array[" + ", ".join(_quote_sql(scope) for scope in scopes) + "]::text[]"

    return f"""-- Machine module registration SQL

insert into modules (module_id, name, key_hash, scopes, enabled)
values ({_quote_sql(module_id)}, {_quote_sql(name or module_id)}, {_quote_sql(key_hash)}, {scope_array}, true)
on conflict (module_id) do update
set key_hash = excluded.key_hash, scopes = excluded.scopes, enabled = true;
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to register a machine module and its API key hash.")
    parser.add_argument("--module-id", default="listing-expiry")
    parser.add_argument("--name")
    parser.add_argument("--api-key", help="Plain API key; generated when omitted")
    parser.add_argument("--scope", action="append", dest="scopes", help="Repeatable; defaults to listings:expire")
    args = parser.parse_args()

    generated = not args.api_key
    api_key = args.api_key or secrets.token_urlsafe(32)

    print(
        render_sql(
            module_id=args.module_id,
            api_key=api_key,
            scopes=args.scopes or ["listings:expire"],
            name=args.name,
        )
    )
    if generated:
        print(f"-- generated api key (store it as KB_WORKER_API_KEY): {api_key}")


if __name__ == "__main__":
    main()
