"""Diagnostic tool for verifying the cloudwire installation and its signing primitives."""

import sys
from importlib import import_module
from typing import Optional

from rich.console import Console
from rich.table import Table

# Published AWS example for deriving a SigV4 signing key and signature
SIGV4_EXAMPLE_SECRET = "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"
SIGV4_EXAMPLE_STRING_TO_SIGN = (
    "AWS4-HMAC-SHA256\n"
    "20150830T123600Z\n"
    "20150830/us-east-1/iam/aws4_request\n"
    "f536975d06c0309214f805bb90ccff089219ecd68b2577efef23edd43b7e1a59"
)
SIGV4_EXAMPLE_SIGNING_KEY = "c4afb1cc5771d871763a393e44b703571b55cc28424d1a5e86da6ed3c154a4b9"
SIGV4_EXAMPLE_SIGNATURE = "5d672d79c15b13162d9279b0855cfba6789a8edb4c82c400e06b5924a6f2b5d7"


def check_dependency(
    module_name: str, package_name: Optional[str] = None, optional: bool = False
) -> tuple[bool, str]:
    """
    Check if a Python module is importable.

    Args:
        module_name: Name of the module to import
        package_name: Display name of the package (defaults to module_name)
        optional: Whether this is an optional dependency

    Returns:
        Tuple of (success: bool, message: str)
    """
    display_name = package_name or module_name

    try:
        import_module(module_name)
        return True, f"[OK] {display_name}"
    except ImportError:
        if optional:
            return False, f"[WARN] {display_name} (optional - not installed)"
        return False, f"[MISSING] {display_name}"


def check_sigv4() -> tuple[bool, str]:
    """
    Check SigV4 key derivation and signing against the published AWS example.

    Returns:
        Tuple of (success: bool, message: str)
    """
    from .signing.aws import sign, signature_key

    key = signature_key(SIGV4_EXAMPLE_SECRET, "20150830", "us-east-1", "iam")
    if key.hex() != SIGV4_EXAMPLE_SIGNING_KEY:
        return False, "[FAIL] SigV4 signing key derivation"
    if sign(key, SIGV4_EXAMPLE_STRING_TO_SIGN) != SIGV4_EXAMPLE_SIGNATURE:
        return False, "[FAIL] SigV4 signature"
    return True, "[OK] SigV4 known-answer test"


def check_jws() -> tuple[bool, str]:
    """
    Check that an ES256 assertion can be signed and verified with a throwaway key.

    Returns:
        Tuple of (success: bool, message: str)
    """
    from cryptography.exceptions import InvalidSignature
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import ec
    from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

    from .signing.oauth import JwsAlgorithm, sign_jws

    key = ec.generate_private_key(ec.SECP256R1())
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    signature = sign_jws(b"header.claims", pem, JwsAlgorithm.ES256)
    r, s = int.from_bytes(signature[:32], "big"), int.from_bytes(signature[32:], "big")
    try:
        key.public_key().verify(encode_dss_signature(r, s), b"header.claims", ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False, "[FAIL] ES256 assertion signature"
    return True, "[OK] ES256 sign/verify"


def run_doctor() -> int:
    """
    Run diagnostic checks and display results.

    Returns:
        Exit code (0 if all core checks pass, 1 otherwise)
    """
    console = Console()
    console.print("Running cloudwire diagnostics...\n")

    core_checks = [
        ("aiohttp", "aiohttp"),
        ("multidict", "multidict"),
        ("requests", "requests"),
        ("pydantic", "pydantic"),
        ("cryptography", "cryptography"),
        ("rich", "rich"),
    ]

    optional_checks = [
        ("yaml", "pyyaml", True),
    ]

    core_results = [check_dependency(mod, pkg) for mod, pkg in core_checks]
    optional_results = [check_dependency(mod, pkg, opt) for mod, pkg, opt in optional_checks]

    core_failed = any(not success for success, _ in core_results)
    # Self-tests need the core stack
    signing_results = [] if core_failed else [check_sigv4(), check_jws()]

    all_checks = {
        "Core Dependencies": core_results,
        "Optional Dependencies": optional_results,
        "Signing": signing_results,
    }

    for category, results in all_checks.items():
        table = Table(title=category, show_header=False, box=None)
        table.add_column("Status", style="bold")

        for success, message in results:
            style = "green" if success else ("yellow" if "optional" in message else "red")
            table.add_row(message, style=style)

        console.print(table)
        console.print()

    if core_failed:
        console.print("\nWARNING: Some core dependencies are missing!")
        console.print("\nRecommended fixes:")
        console.print("  1. For pip users: pip install --upgrade --force-reinstall cloudwire")
        console.print("  2. For development: pip install -e .[dev]")
        return 1

    if any(not success for success, _ in signing_results):
        console.print("\nWARNING: A signing self-test failed!")
        return 1

    console.print("\nAll core dependencies installed and signing self-tests passed!")
    if any(not success for success, _ in optional_results):
        console.print("\nOptional features available:")
        console.print("  - YAML config support: pip install cloudwire[yaml]")
    return 0


if __name__ == "__main__":
    sys.exit(run_doctor())
