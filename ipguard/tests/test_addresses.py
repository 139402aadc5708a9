from __future__ import annotations

import unittest

from ipguard.utils.addresses import (
    address_from_headers,
    is_private_address,
    normalize_address,
    resolve_address,
)


class NormalizeAddressTests(unittest.TestCase):
    def test_ipv4_is_unchanged(self) -> None:
        self.assertEqual(normalize_address(" 1.2.3.4 "), "1.2.3.4")

    def test_ipv6_is_compressed_and_lowercased(self) -> None:
        self.assertEqual(normalize_address("2606:4700:0000:0000:0000:0000:0000:1111"), "2606:4700::1111")
        self.assertEqual(normalize_address("2606:4700::ABCD"), "2606:4700::abcd")

    def test_ipv4_mapped_ipv6_collapses(self) -> None:
        self.assertEqual(normalize_address("::ffff:1.2.3.4"), "1.2.3.4")

    def test_port_and_brackets_are_stripped(self) -> None:
        self.assertEqual(normalize_address("1.2.3.4:8080"), "1.2.3.4")
        self.assertEqual(normalize_address("[2606:4700::1111]:443"), "2606:4700::1111")

    def test_malformed_values_raise(self) -> None:
        for value in ("", "not-an-ip", "1.2.3", "999.1.1.1", "[2606:4700::1"):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    normalize_address(value)

    def test_private_ranges(self) -> None:
        self.assertTrue(is_private_address("10.0.0.5"))
        self.assertTrue(is_private_address("127.0.0.1"))
        self.assertTrue(is_private_address("::1"))
        self.assertTrue(is_private_address("fe80::1"))
        self.assertTrue(is_private_address("garbage"))
        self.assertFalse(is_private_address("8.8.8.8"))


class ResolveAddressTests(unittest.TestCase):
    def test_client_hint_wins(self) -> None:
        resolution = resolve_address("1.2.3.4", {"X-Forwarded-For": "5.6.7.8"}, "8.8.8.8")
        self.assertEqual(resolution.address, "1.2.3.4")
        self.assertEqual(resolution.source, "client")

    def test_malformed_hint_is_unresolved(self) -> None:
        resolution = resolve_address("nonsense", {"X-Forwarded-For": "5.6.7.8"})
        self.assertFalse(resolution.is_resolved)
        self.assertIsNone(resolution.address)

    def test_forwarded_for_skips_private_hops(self) -> None:
        headers = {"X-Forwarded-For": "10.0.0.1, 5.6.7.8, 8.8.8.8"}
        self.assertEqual(address_from_headers(headers), "5.6.7.8")
        resolution = resolve_address(None, headers)
        self.assertEqual(resolution.source, "headers")

    def test_real_ip_then_remote_addr(self) -> None:
        self.assertEqual(address_from_headers({"X-Real-IP": "8.8.4.4"}, "1.1.1.1"), "8.8.4.4")
        self.assertEqual(address_from_headers({}, "1.1.1.1"), "1.1.1.1")

    def test_private_only_sources_are_unresolved(self) -> None:
        headers = {"X-Forwarded-For": "192.168.1.10", "X-Real-IP": "10.1.1.1"}
        self.assertIsNone(address_from_headers(headers, "127.0.0.1"))
        self.assertFalse(resolve_address("", headers, "127.0.0.1").is_resolved)


if __name__ == "__main__":
    unittest.main()
