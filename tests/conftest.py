import os

import pytest

from clang_args import ParseOptions
from clang_parser import libclang_available
from main import explore_header
from target_platform import TargetPlatform

HEADERS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "headers")

LINUX_X64 = "x86_64-unknown-linux-gnu"
LINUX_X86 = "i686-unknown-linux-gnu"
WINDOWS_X64 = "x86_64-pc-windows-msvc"
WINDOWS_X86 = "i686-pc-windows-msvc"


@pytest.fixture(scope="session")
def libclang():
    if not libclang_available():
        pytest.skip("libclang shared library is not available")


@pytest.fixture
def headers_dir():
    return HEADERS_DIR


@pytest.fixture
def explore(libclang):
    """Explores a fixture header: explore("example.h", triple, options)."""
    def run(header, triple=LINUX_X64, options=None, parse_options=None):
        return explore_header(os.path.join(HEADERS_DIR, header), TargetPlatform.parse(triple),
                              options, parse_options or ParseOptions())
    return run
