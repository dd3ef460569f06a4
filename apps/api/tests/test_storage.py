import pytest

from charforge.core.storage import ref_to_path, write_blob


def test_ref_resolves_inside_root(tmp_path):
    root = tmp_path / "storage"
    ref = write_blob(str(root), "portraits/a.jpg", b"x")
    assert ref == "storage://portraits/a.jpg"
    assert ref_to_path(str(root), ref) == (root / "portraits" / "a.jpg").resolve()


@pytest.mark.parametrize(
    "ref",
    ["storage://../storage_secret/key.txt", "storage://../outside.txt", "storage://portraits/../../x"],
)
def test_ref_cannot_leave_root(tmp_path, ref):
    (tmp_path / "storage_secret").mkdir()
    (tmp_path / "storage_secret" / "key.txt").write_text("secret", encoding="utf-8")
    with pytest.raises(ValueError):
        ref_to_path(str(tmp_path / "storage"), ref)


def test_non_storage_ref_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        ref_to_path(str(tmp_path / "storage"), "file:///etc/passwd")
