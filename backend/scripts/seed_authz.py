#!/usr/bin/env python
"""Idempotent seed script for the permission catalog, system roles and root user.

Usage:
    python backend/scripts/seed_authz.py               # seed normally
    python backend/scripts/seed_authz.py --show-roles  # print role summary (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run     # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --validate    # exit 2 if tables disagree with the catalog
    python backend/scripts/seed_authz.py --export-json roles.json
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from washops import create_app, get_db  # type: ignore
from washops.models.authz import Base
import washops.models.audit  # noqa: F401  (register audit table)
from washops.services.seed import seed_all, ensure_root_user, validate_seed, role_summary


def print_role_summary(summary):
    if not summary:
        print("[INFO] No roles present.")
        return
    name_w = max(len(n) for n in summary)
    print(f"{'Role'.ljust(name_w)} | Level | Archetype  | Active | Defaults | Overrides")
    print('-' * (name_w + 60))
    for name, row in summary.items():
        print(f"{name.ljust(name_w)} | {str(row['level']).rjust(5)} | {row['archetype'].ljust(10)} | "
              f"{str(row['active']).ljust(6)} | {str(row['defaults']).rjust(8)} | {len(row['overrides'])}")


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed permission catalog & system roles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role summary after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--no-root', action='store_true', help='Skip root user creation')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role summary JSON (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Validate persisted permissions & roles against the catalog; exits 2 on problems')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        # Lightweight fallback if migrations have not run yet; prefer `alembic upgrade head`
        Base.metadata.create_all(session.get_bind())
        try:
            created_p, created_r = seed_all(session)
            if not args.no_root:
                ensure_root_user(session)
            if args.validate:
                problems = validate_seed(session)
                if problems:
                    print('\n[VALIDATION] FAIL:')
                    for problem in problems:
                        print(' -', problem)
                    session.rollback()
                    sys.exit(2)
                print('[VALIDATION] OK: permission table and roles match the catalog.')
            summary = role_summary(session)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Permissions would create: {created_p}, Roles would create: {created_r}")
            else:
                session.commit()
                print(f"[DONE] Permissions created: {created_p}, Roles created: {created_r}")
            if args.show_roles:
                print('\nRole Summary:')
                print_role_summary(summary)
            if args.export_json is not None:
                canonical = json.dumps(summary, sort_keys=True, separators=(',', ':'))
                payload = {
                    'roles': summary,
                    'meta': {
                        'roles_checksum_sha256': hashlib.sha256(canonical.encode('utf-8')).hexdigest(),
                        'dry_run': args.dry_run,
                    },
                }
                if args.export_json == '-':
                    print(json.dumps(payload, indent=2, sort_keys=True))
                else:
                    with open(args.export_json, 'w', encoding='utf-8') as f:
                        json.dump(payload, f, indent=2, sort_keys=True)
                    print(f"[INFO] Exported JSON to {args.export_json}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

if __name__ == '__main__':
    main()
