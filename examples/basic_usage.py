"""
Example: Basic usage with stash_client
======================================

This example shows how to connect to a Stash server and list repositories.
"""

import logging
import threading

from stash_client import SharedHttpContext, StashConnection, StashHttpConfig


def example_direct():
    """Explicit credentials."""

    conn = StashConnection("USER", "PASSWORD", "https://stash.example.com/")
    conn.connect()
    print(f"Connected as {conn}")

    repos = conn.create_query(page_size=100).read_all("projects/KEY/repos")
    print(f"Found {len(repos)} repositories")


def example_connection_string():
    """Connection string with a cancellable connect."""

    conn = StashConnection.from_connection_string(
        "Data Source=https://stash.example.com;User ID=USER;password=PASSWORD;"
    )

    cancel = threading.Event()
    timer = threading.Timer(10.0, cancel.set)
    timer.daemon = True
    timer.start()
    conn.connect(cancel)
    timer.cancel()
    print(f"Connected as {conn}")


def example_environment():
    """Reads STASH_CONNECTION_STRING or STASH_SERVER, STASH_USER, STASH_PASS."""

    SharedHttpContext.configure(StashHttpConfig(tls_versions=("TLSv1.2", "TLSv1.3")))

    conn = StashConnection.from_env()
    conn.connect()
    for page in conn.create_query(page_size=50).iterate("projects"):
        print([p["key"] for p in page])


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)

    # Uncomment the example you want to run
    # example_direct()
    # example_connection_string()
    # example_environment()

    print("Set up your environment variables and uncomment an example to run.")
    print("Required: STASH_CONNECTION_STRING or STASH_SERVER, STASH_USER, STASH_PASS")
