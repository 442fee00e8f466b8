import json

import pytest

from cristae_density.errors import ConfigurationError, GeometryError, InvariantViolation
from cristae_density.regions import (
    Region,
    RegionCatalog,
    load_catalog,
    region_from_dict,
    region_to_dict,
    save_catalog,
)


class TestRegion:
    def test_rect_area_and_outline(self) -> None:
        region = Region("M1", (10, 10, 50, 50))
        assert region.area == 2500
        assert region.outline == [(10, 10), (60, 10), (60, 60), (10, 60)]

    def test_polygon_area_uses_mask(self) -> None:
        square = ((0.5, 0.5), (9.5, 0.5), (9.5, 9.5), (0.5, 9.5))
        region = Region("P1", (0, 0, 10, 10), points=square)
        assert region.area == 81
        assert region.outline == list(square)

    @pytest.mark.parametrize("name", ["", "  ", "a/b", "a\\b", "..", " padded", "x:y"])
    def test_malformed_names_rejected(self, name) -> None:
        with pytest.raises(InvariantViolation):
            Region(name, (0, 0, 5, 5))

    def test_bbox_must_have_four_values(self) -> None:
        with pytest.raises(InvariantViolation):
            Region("M1", (0, 0, 5))

    def test_zero_size_geometry(self) -> None:
        with pytest.raises(GeometryError):
            Region("M1", (0, 0, 0, 5)).validate_geometry()

    def test_bbox_values_rounded_to_int(self) -> None:
        assert Region("M1", (1.4, 2.6, 10.0, 3.0)).bbox == (1, 3, 10, 3)

    def test_dict_round_trip(self) -> None:
        region = Region("P1", (1, 2, 3, 4), points=((1, 2), (4, 2), (4, 6)))
        assert region_from_dict(region_to_dict(region)) == region


class TestRegionCatalog:
    def test_order_and_lookup(self, catalog) -> None:
        assert catalog.names() == ["M1", "M2", "M3"]
        assert catalog.index_of("M2") == 1
        assert catalog.get("M3").bbox == (110, 60, 40, 40)
        assert "M1" in catalog
        assert "M9" not in catalog
        assert catalog[0].name == "M1"
        assert len(catalog) == 3

    def test_duplicate_name_rejected(self) -> None:
        cat = RegionCatalog([Region("M1", (0, 0, 5, 5))])
        with pytest.raises(InvariantViolation):
            cat.add(Region("M1", (10, 10, 5, 5)))

    def test_save_load_round_trip(self, tmp_path, catalog) -> None:
        path = tmp_path / "regions.json"
        save_catalog(path, catalog)
        assert load_catalog(path) == catalog
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["tool"] == "cristae-density"
        assert [r["name"] for r in data["regions"]] == ["M1", "M2", "M3"]

    def test_save_leaves_no_temp_file(self, tmp_path, catalog) -> None:
        save_catalog(tmp_path / "regions.json", catalog)
        assert [p.name for p in tmp_path.iterdir()] == ["regions.json"]

    def test_roi_manager_archive_accepted(self, tmp_path) -> None:
        path = tmp_path / "rois.json"
        path.write_text(
            json.dumps(
                {
                    "rois": [
                        {"name": "A", "type": "box", "points": [[10, 10], [60, 40]]},
                        {"name": "B", "type": "polygon", "points": [[0, 0], [10, 0], [10, 10], [0, 10]]},
                        {"name": "C", "type": "box", "points": [[1, 1]]},
                    ]
                }
            ),
            encoding="utf-8",
        )
        cat = load_catalog(path)
        assert cat.names() == ["A", "B"]
        assert cat.get("A").bbox == (10, 10, 50, 30)
        assert len(cat.get("B").points) == 4

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError):
            load_catalog(tmp_path / "absent.json")

    def test_invalid_json(self, tmp_path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_catalog(path)

    def test_unknown_format(self, tmp_path) -> None:
        path = tmp_path / "other.json"
        path.write_text(json.dumps({"items": []}), encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_catalog(path)
