"""
Tests for record-set identifiers.
"""
import random
import re

from tmplink.utils.cuid import CUID_LENGTH, CuidGenerator, host_fingerprint, new_cuid, to_base36


class TestBase36:
    """Test base-36 encoding."""

    def test_zero(self):
        assert to_base36(0) == "0"

    def test_values(self):
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"
        assert to_base36(36 ** 4 - 1) == "zzzz"


class TestCuidGenerator:
    """Test the identifier layout."""

    def test_layout(self):
        generator = CuidGenerator(hostname="monitor", pid=1234, rng=random.Random(7))
        cuid = generator.new(now_ms=1_700_000_000_000)

        assert len(cuid) == CUID_LENGTH == 25
        assert cuid[0] == "c"
        assert cuid[1:9] == to_base36(1_700_000_000_000).rjust(8, "0")[-8:]
        assert cuid[9:13] == "0000"
        assert cuid[13:17] == host_fingerprint("monitor", 1234)
        assert re.fullmatch(r"[0-9a-f]{8}", cuid[17:])

    def test_counter_increments(self):
        generator = CuidGenerator(hostname="monitor", pid=1)
        first = generator.new(now_ms=0)
        second = generator.new(now_ms=0)
        assert first[9:13] == "0000"
        assert second[9:13] == "0001"

    def test_counter_wraps(self):
        generator = CuidGenerator(hostname="monitor", pid=1)
        generator._counter = 36 ** 4 - 1
        assert generator.new(now_ms=0)[9:13] == "zzzz"
        assert generator.new(now_ms=0)[9:13] == "0000"

    def test_fingerprint_is_two_blocks(self):
        fingerprint = host_fingerprint("a-very-long-hostname.example.com", 99999)
        assert len(fingerprint) == 4

    def test_unique(self):
        assert len({new_cuid() for _ in range(500)}) == 500
