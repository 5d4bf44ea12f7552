"""Test common.config"""

import os

import pytest
from click import ClickException

from slotqueue.common import config


@pytest.fixture(autouse=True)
def reset_config():
    """Reset the config globals after each test."""
    yield
    config.config = None
    config.test_isolation(False)


def merge_dict(a, b):
    return config.merge_dict_tree(a, b)


def test_no_config(fs):
    # With no config files, slotqueue runs on its defaults
    config.load_config(None)

    assert config.config == config._default_config
    assert config.config is not config._default_config


def test_defaults_not_shared(fs):
    # Modifying the loaded config mustn't touch the defaults
    config.load_config(None)
    config.config["queue"]["concurrency"] = 7

    assert config._default_config["queue"]["concurrency"] == 2


def test_isolation(fs, monkeypatch):
    """Test common.config.test_isolation()"""

    # Create the canary
    fs.create_file("/etc/slotqueue/slotqueue.conf", contents="canary: true\n")

    # This should always get loaded
    fs.create_file("/test/from/env/test.yaml", contents="env_data: true\n")
    monkeypatch.setenv("SLOTQUEUE_CONFIG_FILE", "/test/from/env/test.yaml")

    # Not isolated
    config.load_config(None)
    assert "canary" in config.config
    assert "env_data" in config.config

    # Reset
    config.config = None

    # Isolated
    config.test_isolation()
    config.load_config(None)
    assert "canary" not in config.config
    assert "env_data" in config.config

    # Reset
    config.config = None

    # Not isolated again
    config.test_isolation(False)
    config.load_config(None)
    assert "canary" in config.config
    assert "env_data" in config.config


def test_config_env(fs, monkeypatch):
    # Test that we can load config from an environment variable
    fs.create_file("/test/from/env/test.yaml", contents="hello: test\n")

    monkeypatch.setenv("SLOTQUEUE_CONFIG_FILE", "/test/from/env/test.yaml")
    config.load_config(None)
    assert config.config == merge_dict(config._default_config, {"hello": "test"})


def test_config_cli(fs, monkeypatch):
    # The command-line file beats the environment
    fs.create_file("/test/from/env/test.yaml", contents="hello: env\n")
    fs.create_file("/test/from/cli/test.yaml", contents="hello: cli\n")

    monkeypatch.setenv("SLOTQUEUE_CONFIG_FILE", "/test/from/env/test.yaml")
    config.load_config("/test/from/cli/test.yaml")
    assert config.config["hello"] == "cli"


def test_missing_file(fs, monkeypatch):
    # Missing user-supplied files are skipped
    monkeypatch.setenv("SLOTQUEUE_CONFIG_FILE", "/no/such/file.yaml")
    config.load_config("/no/such/cli.yaml")

    assert config.config == config._default_config


def test_precendence(fs, monkeypatch):
    # Test the precedence of configuration imported from files is correct

    fs.create_file("/etc/slotqueue/slotqueue.conf", contents="hello: test\n")
    config.load_config(None)
    assert config.config == merge_dict(config._default_config, {"hello": "test"})

    fs.create_file("/etc/xdg/slotqueue/slotqueue.conf", contents="hello: test2\n")
    config.load_config(None)
    assert config.config == merge_dict(config._default_config, {"hello": "test2"})

    fs.create_file(
        os.path.expanduser("~/.config/slotqueue/slotqueue.conf"),
        contents="hello: test3\nmeh: embiggens",
    )
    config.load_config(None)
    assert config.config == merge_dict(
        config._default_config, {"hello": "test3", "meh": "embiggens"}
    )

    fs.create_file("/test/from/env/test.yaml", contents="hello: test4\n")
    monkeypatch.setenv("SLOTQUEUE_CONFIG_FILE", "/test/from/env/test.yaml")
    config.load_config(None)
    assert config.config == merge_dict(
        config._default_config, {"hello": "test4", "meh": "embiggens"}
    )


def test_bad_yaml(fs):
    fs.create_file("/bad.yaml", contents="queue: [unclosed\n")

    with pytest.raises(ClickException) as excinfo:
        config.load_config("/bad.yaml")

    assert "Unable to parse" in str(excinfo.value)


def test_not_mapping(fs):
    fs.create_file("/list.yaml", contents="- one\n- two\n")

    with pytest.raises(ClickException) as excinfo:
        config.load_config("/list.yaml")

    assert "not a YAML mapping" in str(excinfo.value)


def test_empty_file(fs):
    fs.create_file("/empty.yaml", contents="")
    config.load_config("/empty.yaml")

    assert config.config == config._default_config


def test_get(set_config):
    """Test config.get()"""

    set_config["one"] = {"two": {"three": 3}, "word": "hello"}

    assert config.get("one.two.three") == 3
    assert config.get("one.word", as_type=str) == "hello"
    assert config.get("one.two") == {"three": 3}
    assert config.get("one.missing", default=None) is None

    # Descending into a scalar is just a missing key
    assert config.get("one.word.deeper", default="x") == "x"

    with pytest.raises(KeyError):
        config.get("one.missing")

    with pytest.raises(ValueError):
        config.get("one.word", as_type=int)


def test_get_defaults_before_load():
    # Before load_config is called, the defaults are used
    assert config.config is None
    assert config.get("queue.name") == "queue"


@pytest.mark.slotqueue_config({"queue": {"concurrency": True}})
def test_get_bool_not_int(set_config):
    with pytest.raises(ValueError):
        config.get("queue.concurrency", as_type=int)

    assert config.get("queue.concurrency", as_type=bool) is True


@pytest.mark.slotqueue_config({"queue": {"concurrency": 4}})
def test_get_int(set_config):
    """Test config.get_int()"""

    assert config.get_int("queue.concurrency") == 4
    assert config.get_int("queue.concurrency", min=4, max=4) == 4
    assert config.get_int("queue.missing", default=9) == 9

    with pytest.raises(ValueError):
        config.get_int("queue.concurrency", min=5)

    with pytest.raises(ValueError):
        config.get_int("queue.concurrency", max=3)

    with pytest.raises(ValueError):
        config.get_int("queue.name")


def test_merge():
    # Test the dictionary merging algorithm used by the configuration

    conf_a = {
        "dict1": {
            "dict2": {"scalar1": "a", "scalar2": "a"},
            "scalar3": "a",
            "list1": ["a"],
        },
        "dict_or_list": {"scalar4": "a"},
    }

    conf_b = {
        "dict1": {
            "dict2": {"scalar1": "b", "scalar4": "b"},
            "scalar3": "b",
            "list1": ["b"],
        },
        "dict_or_list": ["b"],
        "dict3": {"scalar5": "b"},
    }

    test_c = config.merge_dict_tree(conf_a, conf_b)

    # The correctly merged output
    conf_c = {
        "dict1": {
            "dict2": {"scalar1": "b", "scalar2": "a", "scalar4": "b"},
            "scalar3": "b",
            "list1": ["a", "b"],
        },
        "dict_or_list": ["b"],
        "dict3": {"scalar5": "b"},
    }

    assert conf_c == test_c

    # Dicts only in b are copied
    assert test_c["dict3"] is not conf_b["dict3"]
