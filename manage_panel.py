from __future__ import annotations

import argparse

from ekinpanel import settings
from ekinpanel.models import Asset, Role
from ekinpanel.records import filter_records, parse_bucket_filter, parse_job_filter
from ekinpanel.store import PanelStore, StoreError
from ekinpanel.warranty import DUE_THRESHOLDS, WarrantyBucket, bucket_label, classify_asset, count_buckets, normalize_threshold


def _service_store() -> PanelStore:
    if not settings.SUPABASE_SERVICE_KEY:
        raise SystemExit("SUPABASE_SERVICE_KEY is required for panel management commands")
    return PanelStore(api_key=settings.SUPABASE_SERVICE_KEY)


def print_asset(asset: Asset, due_days: int) -> None:
    status = classify_asset(asset, due_days)
    install = asset.install_date.isoformat() if asset.install_date else "-"
    print(
        f"{asset.uid:<28} {(asset.customer_name or '-'):<24} {(asset.customer_phone or '-'):<14} "
        f"{asset.job_type_label:<15} {install:<10} {status.label}"
    )


def cmd_list(ns: argparse.Namespace) -> None:
    due_days = normalize_threshold(ns.due)
    try:
        assets = _service_store().list_assets()
    except StoreError as exc:
        raise SystemExit(f"Could not load records: {exc.message}")
    rows = filter_records(assets, ns.query, parse_job_filter(ns.job), parse_bucket_filter(ns.warranty), due_days)
    if not rows:
        print("(no records)")
        return
    for asset in rows:
        print_asset(asset, due_days)


def cmd_stats(ns: argparse.Namespace) -> None:
    due_days = normalize_threshold(ns.due)
    try:
        assets = _service_store().list_assets()
    except StoreError as exc:
        raise SystemExit(f"Could not load records: {exc.message}")
    counts = count_buckets(assets, due_days)
    print(f"{'Toplam':<16} {counts.total:>5}")
    for bucket in (WarrantyBucket.EXPIRED, WarrantyBucket.DUE_SOON, WarrantyBucket.ACTIVE, WarrantyBucket.NO_DATE):
        print(f"{bucket_label(bucket, due_days):<16} {counts.for_bucket(bucket):>5}")


def cmd_set_role(ns: argparse.Namespace) -> None:
    role = Role(ns.role)
    try:
        _service_store().set_role(ns.user_id, role)
    except StoreError as exc:
        raise SystemExit(f"Could not update role: {exc.message}")
    print(f"Role for '{ns.user_id}' set to {role.value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage Ekin office panel records and roles")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List records with their warranty status")
    p_list.add_argument("--query", "-q", default="")
    p_list.add_argument("--job", default="ALL")
    p_list.add_argument("--warranty", "-w", default="ALL", help="EXPIRED, DUE, ACTIVE, NODATE or ALL")
    p_list.add_argument("--due", type=int, default=30, choices=DUE_THRESHOLDS)
    p_list.set_defaults(func=cmd_list)

    p_stats = sub.add_parser("stats", help="Print warranty counters")
    p_stats.add_argument("--due", type=int, default=30, choices=DUE_THRESHOLDS)
    p_stats.set_defaults(func=cmd_stats)

    p_role = sub.add_parser("set-role", help="Set a user's panel role")
    p_role.add_argument("user_id")
    p_role.add_argument("role", choices=[role.value for role in Role])
    p_role.set_defaults(func=cmd_set_role)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
