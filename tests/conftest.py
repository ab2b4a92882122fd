"""Fixtures for stubbed EC2 unit tests and live integration tests."""

import time

import boto3
import pytest
from botocore.stub import Stubber

from pgvm.provisioner import Provisioner


def pytest_addoption(parser):
    parser.addoption(
        "--region",
        default="us-east-1",
        help="AWS region for integration tests (default: us-east-1)",
    )


@pytest.fixture(scope="session")
def region(request):
    return request.config.getoption("--region")


@pytest.fixture
def ec2():
    return boto3.client(
        "ec2",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(ec2):
    """Stubber over the EC2 client; fails the test if a queued response is left over."""
    with Stubber(ec2) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def provisioner(ec2, stubber):
    return Provisioner(ec2)


@pytest.fixture
def no_sleep(monkeypatch):
    """Waiter polling sleeps between attempts; skip the wait."""
    monkeypatch.setattr(time, "sleep", lambda seconds: None)
