"""Tests for reference catalog loading."""

from consult_assist.services.medical_catalog import load_catalog, load_catalog_from_dir, parse_keywords


class TestParseKeywords:
    def test_pipe_delimited(self):
        assert parse_keywords(" 上感 | 感冒||") == ("上感", "感冒")

    def test_missing(self):
        assert parse_keywords(None) == ()
        assert parse_keywords("") == ()


class TestLoadCatalog:
    def test_typed_entries(self, catalog):
        assert len(catalog.get_all_diagnoses()) == 4
        medicine = catalog.get_all_medicines()[0]
        assert medicine.generic_name == "阿莫西林"
        assert medicine.price == 12.5
        assert catalog.get_all_items()[1].keywords == ("CRP",)

    def test_missing_columns_become_empty(self):
        catalog = load_catalog({"medicines": [{"id": "m", "name": "某药", "price": "n/a"}]})
        medicine = catalog.medicines[0]
        assert medicine.generic_name == ""
        assert medicine.spec == ""
        assert medicine.price == 0.0
        assert catalog.diagnoses == ()
        assert catalog.items == ()


class TestLoadCatalogFromDir:
    def test_reads_csv_tables(self, tmp_path):
        (tmp_path / "diagnoses.csv").write_text(
            "id,code,name,keywords\nd1,J02.900,急性咽炎,咽炎|嗓子疼\n", encoding="utf-8-sig"
        )
        (tmp_path / "items.csv").write_text("id,name,price,category\ne1,血常规,20\n", encoding="utf-8")

        catalog = load_catalog_from_dir(str(tmp_path))

        assert catalog.diagnoses[0].code == "J02.900"
        assert catalog.diagnoses[0].keywords == ("咽炎", "嗓子疼")
        assert catalog.items[0].category == ""
        assert catalog.items[0].price == 20.0
        # medicines.csv is absent
        assert catalog.medicines == ()
