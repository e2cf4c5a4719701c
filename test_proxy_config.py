import dataclasses
import os
import tempfile
import unittest

from proxy_config import ConfigInvalid, ProxyConfig, load_config, parse_listen_address
from wol import InvalidAddress

VALID_YAML = """\
listen_port: ":8080"
mac_address: "00:11:22:33:44:55"
server_address: "192.168.1.50:8000"
wol_port: 9
check_interval: 5
retry_attempts: 10
"""


class TestProxyConfig(unittest.TestCase):
    def setUp(self):
        self.values = {
            "listen_port": ":8080",
            "mac_address": "00:11:22:33:44:55",
            "server_address": "192.168.1.50:8000",
            "wol_port": 9,
            "check_interval": 5,
            "retry_attempts": 10,
        }

    def test_from_mapping(self):
        config = ProxyConfig.from_mapping(self.values)
        self.assertEqual(config.mac_address, "00:11:22:33:44:55")
        self.assertEqual(config.server_address, "192.168.1.50:8000")
        self.assertEqual(config.server_url, "http://192.168.1.50:8000")
        self.assertEqual(config.wol_port, 9)
        self.assertEqual(config.check_interval, 5.0)
        self.assertEqual(config.retry_attempts, 10)
        self.assertEqual(config.request_timeout, 30)
        self.assertEqual(config.broadcast_address, "255.255.255.255")
        self.assertEqual(config.threads, 16)
        self.assertEqual(config.listen_address, ("0.0.0.0", 8080))

    def test_numeric_strings_are_converted(self):
        self.values.update(wol_port="7", check_interval="0.5", retry_attempts="3")
        config = ProxyConfig.from_mapping(self.values)
        self.assertEqual(config.wol_port, 7)
        self.assertEqual(config.check_interval, 0.5)
        self.assertEqual(config.retry_attempts, 3)

    def test_config_is_immutable(self):
        config = ProxyConfig.from_mapping(self.values)
        with self.assertRaises(dataclasses.FrozenInstanceError):
            config.retry_attempts = 1

    def test_missing_required_values(self):
        for key in self.values:
            with self.subTest(key=key):
                values = dict(self.values)
                del values[key]
                with self.assertRaises(ConfigInvalid):
                    ProxyConfig.from_mapping(values)

    def test_empty_values(self):
        self.values["server_address"] = ""
        with self.assertRaises(ConfigInvalid):
            ProxyConfig.from_mapping(self.values)

    def test_zero_and_negative_values(self):
        for key, value in (("wol_port", 0), ("check_interval", 0), ("retry_attempts", 0),
                           ("retry_attempts", -1), ("request_timeout", -5), ("threads", 0)):
            with self.subTest(key=key, value=value):
                values = dict(self.values, **{key: value})
                with self.assertRaises(ConfigInvalid):
                    ProxyConfig.from_mapping(values)

    def test_non_finite_numbers(self):
        for key in ("check_interval", "request_timeout"):
            for value in ("nan", "inf", "-inf", float("nan"), float("inf")):
                with self.subTest(key=key, value=value):
                    values = dict(self.values, **{key: value})
                    with self.assertRaises(ConfigInvalid):
                        ProxyConfig.from_mapping(values)

    def test_fractional_integers_rejected(self):
        for key, value in (("retry_attempts", 2.5), ("wol_port", 9.1), ("threads", 4.5),
                           ("retry_attempts", "2.5"), ("retry_attempts", float("inf"))):
            with self.subTest(key=key, value=value):
                values = dict(self.values, **{key: value})
                with self.assertRaises(ConfigInvalid):
                    ProxyConfig.from_mapping(values)

    def test_whole_float_integers_accepted(self):
        self.values.update(retry_attempts=3.0, threads=8)
        config = ProxyConfig.from_mapping(self.values)
        self.assertEqual(config.retry_attempts, 3)
        self.assertEqual(config.threads, 8)

    def test_malformed_numbers(self):
        self.values["retry_attempts"] = "ten"
        with self.assertRaises(ConfigInvalid):
            ProxyConfig.from_mapping(self.values)

    def test_wol_port_out_of_range(self):
        self.values["wol_port"] = 70000
        with self.assertRaises(ConfigInvalid):
            ProxyConfig.from_mapping(self.values)

    def test_invalid_mac_address(self):
        self.values["mac_address"] = "00:11:22:33:44"
        with self.assertRaises(InvalidAddress):
            ProxyConfig.from_mapping(self.values)

    def test_server_address_must_not_be_url(self):
        for address in ("http://192.168.1.50", "192.168.1.50/app"):
            with self.subTest(address=address):
                values = dict(self.values, server_address=address)
                with self.assertRaises(ConfigInvalid):
                    ProxyConfig.from_mapping(values)

    def test_not_a_mapping(self):
        with self.assertRaises(ConfigInvalid):
            ProxyConfig.from_mapping(["listen_port", ":8080"])


class TestParseListenAddress(unittest.TestCase):
    def test_forms(self):
        self.assertEqual(parse_listen_address(":8080"), ("0.0.0.0", 8080))
        self.assertEqual(parse_listen_address("8080"), ("0.0.0.0", 8080))
        self.assertEqual(parse_listen_address(8080), ("0.0.0.0", 8080))
        self.assertEqual(parse_listen_address("127.0.0.1:3000"), ("127.0.0.1", 3000))
        self.assertEqual(parse_listen_address("[::1]:3000"), ("::1", 3000))

    def test_invalid(self):
        for value in ("", ":http", "localhost:", ":0", ":65536"):
            with self.subTest(value=value):
                with self.assertRaises(ConfigInvalid):
                    parse_listen_address(value)


class TestLoadConfig(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)
        self.config_path = os.path.join(self.temp_dir.name, "config.yaml")

    def write(self, content):
        with open(self.config_path, "w") as file:
            file.write(content)

    def test_load_from_yaml(self):
        self.write(VALID_YAML)
        config = load_config(self.config_path, environ={})
        self.assertEqual(config.listen_port, ":8080")
        self.assertEqual(config.server_address, "192.168.1.50:8000")
        self.assertEqual(config.retry_attempts, 10)

    def test_env_vars_override_yaml(self):
        self.write(VALID_YAML)
        environ = {
            "WOL_PROXY_SERVER_ADDRESS": "10.0.0.2",
            "WOL_PROXY_RETRY_ATTEMPTS": "4",
            "WOL_PROXY_BROADCAST_ADDRESS": "192.168.1.255",
            "UNRELATED": "ignored",
        }
        config = load_config(self.config_path, environ=environ)
        self.assertEqual(config.server_address, "10.0.0.2")
        self.assertEqual(config.retry_attempts, 4)
        self.assertEqual(config.broadcast_address, "192.168.1.255")
        self.assertEqual(config.mac_address, "00:11:22:33:44:55")

    def test_non_finite_env_override(self):
        self.write(VALID_YAML)
        with self.assertRaises(ConfigInvalid):
            load_config(self.config_path, environ={"WOL_PROXY_CHECK_INTERVAL": "nan"})

    def test_non_finite_yaml_value(self):
        self.write(VALID_YAML.replace("check_interval: 5", "check_interval: .inf"))
        with self.assertRaises(ConfigInvalid):
            load_config(self.config_path, environ={})

    def test_invalid_env_override(self):
        self.write(VALID_YAML)
        with self.assertRaises(ConfigInvalid):
            load_config(self.config_path, environ={"WOL_PROXY_WOL_PORT": "nine"})

    def test_missing_file(self):
        with self.assertRaises(ConfigInvalid):
            load_config(os.path.join(self.temp_dir.name, "missing.yaml"), environ={})

    def test_invalid_yaml(self):
        self.write("listen_port: [unclosed\n")
        with self.assertRaises(ConfigInvalid):
            load_config(self.config_path, environ={})

    def test_yaml_must_be_mapping(self):
        self.write("- just\n- a list\n")
        with self.assertRaises(ConfigInvalid):
            load_config(self.config_path, environ={})

    def test_empty_file(self):
        self.write("")
        with self.assertRaises(ConfigInvalid):
            load_config(self.config_path, environ={})


if __name__ == '__main__':
    unittest.main()
