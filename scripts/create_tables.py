"""Create the DynamoDB document table and seed default customer records.

Usage:
    python scripts/create_tables.py --endpoint-url http://localhost:4566
"""

from __future__ import annotations

import argparse
from typing import Any

import boto3

TABLE_NAME = "synthflow-documents"

DEFAULT_RATE_LIMIT = {
    "currentJobs": 0,
    "maxJobs": 5,
    "cooldownPeriodSeconds": 45,
    "cooldownJobs": [],
    "version": 0,
}


def create_tables(ddb: Any, suffix: str = "", table_name: str = TABLE_NAME) -> bool:
    """Create the PK/SK document table and its collection-group GSI. Returns False if it already exists."""
    client = ddb.meta.client
    full_name = f"{table_name}{suffix}"
    existing = client.list_tables().get("TableNames", [])
    if full_name in existing:
        print(f"  Table {full_name} already exists, skipping")
        return False

    client.create_table(
        TableName=full_name,
        KeySchema=[
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
            {"AttributeName": "CG", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "collection-group-index",
                "KeySchema": [
                    {"AttributeName": "CG", "KeyType": "HASH"},
                    {"AttributeName": "SK", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=full_name)
    print(f"  Created table {full_name}")
    return True


def seed_customers(ddb: Any, customer_ids: list[str], suffix: str = "",
                   table_name: str = TABLE_NAME, retention_days: int = 180) -> int:
    """Write default rate-limit and retention documents for each customer. Existing ones are kept."""
    tbl = ddb.Table(f"{table_name}{suffix}")
    client = ddb.meta.client
    written = 0
    for customer_id in customer_ids:
        for item in (
            {"PK": "rate_limits", "SK": customer_id, "CG": "rate_limits",
             "customerId": customer_id, **DEFAULT_RATE_LIMIT},
            {"PK": "retention_policies", "SK": customer_id, "CG": "retention_policies",
             "customerId": customer_id, "retentionDays": retention_days},
        ):
            try:
                tbl.put_item(Item=item, ConditionExpression="attribute_not_exists(PK)")
                written += 1
            except client.exceptions.ConditionalCheckFailedException:
                print(f"  {item['PK']}/{customer_id} already exists, skipping")
    print(f"  Seeded {written} customer documents")
    return written


def main() -> None:
    parser = argparse.ArgumentParser(description="Create DynamoDB tables for Synthflow")
    parser.add_argument("--endpoint-url", default=None, help="DynamoDB endpoint (e.g. http://localhost:4566)")
    parser.add_argument("--table-suffix", default="", help="Table name suffix (e.g. -dev)")
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    parser.add_argument("--customer", action="append", default=[], help="Customer id to seed (repeatable)")
    args = parser.parse_args()

    kwargs: dict[str, Any] = {"region_name": args.region}
    if args.endpoint_url:
        kwargs["endpoint_url"] = args.endpoint_url

    ddb = boto3.resource("dynamodb", **kwargs)

    print("Creating tables...")
    create_tables(ddb, suffix=args.table_suffix)

    if args.customer:
        print("Seeding customers...")
        seed_customers(ddb, args.customer, suffix=args.table_suffix)

    print("Done!")


if __name__ == "__main__":
    main()
