"""Run a quick request against the app through FastAPI's TestClient."""

import os
import sys

# Ensure backend folder is on sys.path so the `portal` package can be imported
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastapi.testclient import TestClient  # noqa: E402

from portal.main import app  # noqa: E402


def run_testclient():
    client = TestClient(app)
    for path in ('/health', '/api/courses?limit=1', '/api/jobs?limit=1'):
        resp = client.get(path)
        print(path, 'STATUS:', resp.status_code)
        print('JSON:', resp.json())


if __name__ == '__main__':
    run_testclient()
