#!/usr/bin/env python3
"""
Register the clinic's custom FHIR extensions with the repository.

Safe to re-run: definitions already present are reported, not duplicated.

    python scripts/register_extensions.py
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clinicsync.config import config
from clinicsync.fhir.client import FhirClient
from clinicsync.fhir.extensions import ExtensionRegistrar


def main() -> int:
    print(f"[ClinicSync] Registering extensions at {config.fhir_root()}")

    client = FhirClient()
    try:
        result = ExtensionRegistrar(client).ensure_registered()
    finally:
        client.close()

    for url in result.registered:
        print(f"  + registered      {url} -> {result.ids.get(url)}")
    for url in result.already_present:
        print(f"  = already present {url} -> {result.ids.get(url)}")
    for failure in result.failed:
        print(f"  ! failed          {failure['url']}: {failure['error']}")

    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
