import pytest

from warden.errors import ImageReferenceError
from warden.models.image import digest_from_image_id, parse_image_reference


DIGEST = "sha256:" + "a" * 64


@pytest.mark.parametrize("image, registry, repository, tag, digest", [
    ("nginx", "docker.io", "library/nginx", "latest", None),
    ("nginx:1.25", "docker.io", "library/nginx", "1.25", None),
    ("bitnami/redis:7", "docker.io", "bitnami/redis", "7", None),
    ("index.docker.io/library/nginx:1", "docker.io", "library/nginx", "1", None),
    ("Registry.Example.com/prod/app:1.0", "registry.example.com", "prod/app", "1.0", None),
    ("localhost:5000/app", "localhost:5000", "app", "latest", None),
    (f"registry.example.com/prod/app@{DIGEST}", "registry.example.com", "prod/app", None, DIGEST),
    (f"registry.example.com/prod/app:1.0@{DIGEST}", "registry.example.com", "prod/app", "1.0", DIGEST),
])
def test_parse_image_reference(image, registry, repository, tag, digest):
    ref = parse_image_reference(image)
    assert ref.registry == registry
    assert ref.repository == repository
    assert ref.tag == tag
    assert ref.digest == digest


@pytest.mark.parametrize("image", [
    "",
    " nginx",
    "registry.example.com/",
    "registry.example.com/Prod/app",
    "app@sha256:short",
    "app:bad tag",
])
def test_parse_image_reference_rejects_invalid(image):
    with pytest.raises(ImageReferenceError):
        parse_image_reference(image)


def test_image_reference_error_is_value_error():
    with pytest.raises(ValueError):
        parse_image_reference("UPPER/case")


def test_with_digest_keeps_tag():
    ref = parse_image_reference("registry.example.com/prod/app:1.0").with_digest("sha256:" + "A" * 64)
    assert ref.tag == "1.0"
    assert ref.digest == DIGEST
    assert str(ref) == f"registry.example.com/prod/app:1.0@{DIGEST}"


@pytest.mark.parametrize("image_id, expected", [
    (f"docker-pullable://registry.example.com/prod/app@{DIGEST}", DIGEST),
    (f"docker.io/library/nginx@{DIGEST}", DIGEST),
    (DIGEST, None),
    ("", None),
    (None, None),
    ("repo@sha256:nothex", None),
])
def test_digest_from_image_id(image_id, expected):
    assert digest_from_image_id(image_id) == expected
