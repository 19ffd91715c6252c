import pytest

from dbmigrate.source.bindata import AssetSource, BindataDriver, resource, with_instance

ASSETS = {
    "1_test.up.sql": b"1 up",
    "1_test.down.sql": b"1 down",
    "3_test.up.sql": b"3 up",
    "4_test.up.sql": b"4 up",
    "4_test.down.sql": b"4 down",
    "5_test.down.sql": b"5 down",
    "7_test.up.sql": b"7 up",
    "7_test.down.sql": b"7 down",
    "README.md": b"not a migration",
}

PREV = {0: None, 1: None, 2: None, 3: 1, 4: 3, 5: 4, 6: None, 7: 5, 8: None, 9: None}
NEXT = {0: None, 1: 3, 2: None, 3: 4, 4: 5, 5: 7, 6: None, 7: None, 8: None, 9: None}
HAS_UP = {1, 3, 4, 7}
HAS_DOWN = {1, 4, 5, 7}


def assert_conforms(driver):
    assert driver.first() == 1
    for table, step in ((PREV, driver.prev), (NEXT, driver.next)):
        for version, expected in table.items():
            if expected is None:
                with pytest.raises(FileNotFoundError):
                    step(version)
            else:
                assert step(version) == expected
    for version in range(9):
        for read, present in ((driver.read_up, HAS_UP), (driver.read_down, HAS_DOWN)):
            if version in present:
                body, identifier = read(version)
                body.close()
                assert identifier
            else:
                with pytest.raises(FileNotFoundError):
                    read(version)


def make_source():
    return resource(list(ASSETS), ASSETS.__getitem__)


def test_driver_conforms():
    driver = with_instance(make_source())
    assert_conforms(driver)


def test_with_instance_reads_bodies():
    driver = with_instance(make_source())
    body, identifier = driver.read_up(7)
    assert body.read() == b"7 up"
    assert identifier == "test"
    body, _ = driver.read_down(4)
    assert body.read() == b"4 down"


def test_resource_builds_asset_source():
    source = make_source()
    assert isinstance(source, AssetSource)
    assert list(source.names) == list(ASSETS)
    assert source.asset_func("3_test.up.sql") == b"3 up"


def test_open_is_refused():
    with pytest.raises(RuntimeError):
        BindataDriver().open("")


def test_with_instance_rejects_other_types():
    with pytest.raises(TypeError):
        with_instance({"names": []})


def test_with_instance_rejects_duplicates():
    source = resource(["1_a.up.sql", "1_b.up.sql"], lambda name: b"")
    with pytest.raises(ValueError, match="unable to parse file 1_b.up.sql"):
        with_instance(source)


def test_asset_errors_propagate():
    def missing(name):
        raise KeyError(name)

    driver = with_instance(resource(["1_a.up.sql"], missing))
    with pytest.raises(KeyError):
        driver.read_up(1)


def test_not_found_names_path():
    driver = with_instance(resource([], lambda name: b""))
    with pytest.raises(FileNotFoundError) as info:
        driver.first()
    assert info.value.filename == "<go-bindata>"