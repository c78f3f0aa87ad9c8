"""Log in against a running backend and list every collection.

Usage: python scripts/smoke_check.py --base-url http://localhost:8000 --email ... --password ...
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `konsider` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from konsider.client import KonsiderClient

RESOURCES = ("software", "requesters", "requests", "reviews")


def main(base_url: str, email: str, password: str) -> int:
    with KonsiderClient(base_url) as client:
        login = client.login(email, password)
        if not login.ok:
            print(f'Login failed: {login.error.status} {login.error.message}')
            return 1
        print('Logged in as', login.success['role'])
        result = client.fetch_all([("GET", f"/api/v1/{name}") for name in RESOURCES])
        if not result.ok:
            print(f'Listing failed: {result.error.status} {result.error.message}')
            return 1
        for name, payload in zip(RESOURCES, result.success):
            total = payload.get('metadata', {}).get('total_records', 0)
            print(f'{name}: {total} records')
        client.logout()
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--base-url', default='http://localhost:8000')
    parser.add_argument('--email', required=True)
    parser.add_argument('--password', required=True)
    args = parser.parse_args()
    sys.exit(main(args.base_url, args.email, args.password))
