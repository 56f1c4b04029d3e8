"""
Shared fixtures for session-log tests.
"""

import pytest


LOG_HEADER = """# Moto Sensor Log v1.1
# Device: Test Rig
# Date: 2024-06-01 10:00:00
timestamp,sensor_type,data1,data2,data3,data4,data5,data6
"""


@pytest.fixture
def write_log(tmp_path):
    """Write log text to a file under tmp_path and return its path."""
    def _write(content: str, name: str = "session.csv"):
        path = tmp_path / name
        path.write_text(content)
        return path
    return _write
