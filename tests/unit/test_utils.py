import csv

from playforce.utils import fieldnames_for, flatten_record, write_records_csv


def test_flatten_record_relationships_and_subqueries():
    rec = {
        "attributes": {"type": "Account"},
        "Id": "001",
        "Owner": {"attributes": {"type": "User"}, "Name": "Ann", "Manager": {"Name": "Bo"}},
        "Contacts": {"totalSize": 2, "done": True, "records": [{}, {}]},
    }
    assert flatten_record(rec) == {
        "Id": "001",
        "Owner.Name": "Ann",
        "Owner.Manager.Name": "Bo",
        "Contacts": 2,
    }


def test_fieldnames_first_seen_order():
    rows = [{"b": 1, "a": 2}, {"a": 3, "c": 4}]
    assert fieldnames_for(rows) == ["b", "a", "c"]


def test_write_records_csv(tmp_path):
    path = tmp_path / "out.csv"
    records = [
        {"attributes": {"type": "Case"}, "Id": "1", "Description": "a\r\nb", "Owner": None},
        {"attributes": {"type": "Case"}, "Id": "2", "Owner": {"Name": "Ann"}, "Tags": ["x", "y"]},
    ]

    assert write_records_csv(path, records) == 2

    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        rows = list(reader)
    assert reader.fieldnames == ["Id", "Description", "Owner", "Owner.Name", "Tags"]
    assert rows[0]["Description"] == "a\nb"
    assert rows[0]["Owner.Name"] == ""
    assert rows[1]["Owner.Name"] == "Ann"
    assert rows[1]["Tags"] == '["x", "y"]'
