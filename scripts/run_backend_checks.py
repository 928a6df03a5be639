#!/usr/bin/env python3
"""
Script runner for manual backend checks (not a pytest test file).

    BASE_URL=http://localhost:3000 python scripts/run_backend_checks.py
"""
import os

import requests

BASE_URL = os.environ.get('BASE_URL', 'http://localhost:3000').rstrip('/')
API_VERSION = os.environ.get('API_VERSION', 'v1')


def check(name, path):
    try:
        r = requests.get(f"{BASE_URL}{path}", timeout=5)
        print(name, r.status_code, r.text[:200])
        return r.ok
    except requests.RequestException as e:
        print(name, 'failed', e)
        return False


if __name__ == '__main__':
    results = [
        check('health', '/api/health'),
        check('products', f'/api/{API_VERSION}/products'),
    ]
    raise SystemExit(0 if all(results) else 1)
