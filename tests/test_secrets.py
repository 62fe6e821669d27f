import pytest

from rundeploy.ops.secrets import parse_secret_reference


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("my-secret:3", ("my-secret", "3")),
        ("my-secret", ("my-secret", "latest")),
        ("my-secret:", ("my-secret", "latest")),
        ("projects/p/secrets/s/versions/7", ("s", "7")),
        ("projects/p/secrets/s", ("s", "latest")),
        ("projects/p/secrets/s/versions/", ("s", "latest")),
    ],
)
def test_parse_secret_reference(raw, expected):
    assert parse_secret_reference(raw) == expected


def test_parse_secret_reference_missing_name():
    ref = parse_secret_reference(":3")
    assert ref.secret == ""
    assert not ref.is_valid

    ref = parse_secret_reference("projects/p/secrets//versions/2")
    assert ref.secret == ""
    assert ref.version == "2"
