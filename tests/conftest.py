from typing import Any

import pytest


@pytest.fixture()
def sample_events() -> list[dict[str, Any]]:
    """Six gateway events with every curated field present."""
    return [
        {
            "time": 1767225600 + n,
            "index": "security",
            "sourcetype": "nginx:access" if n % 2 == 0 else "okta:system",
            "host": f"edge-0{n % 3}",
            "source": "/var/log/gateway.log",
            "event": f"POST /login {401 if n < 3 else 200}",
            "fields": {
                "src_ip": f"10.0.0.{n}",
                "user": f"user{n}",
                "action": "deny" if n < 3 else "allow",
                "http_status": 401 if n < 3 else 200,
                "uri": "/login",
                "bytes_out": 128 * n,
                "latency_ms": 10 + n,
                "severity": "medium",
            },
        }
        for n in range(6)
    ]
