from datetime import date

from concert_pipeline import kopis_sync
from concert_pipeline.kopis_sync import (
    date_windows,
    parse_intro_images,
    parse_records,
    parse_ticket_sites,
    sync,
    to_row,
)

LIST_XML = """<?xml version="1.0" encoding="UTF-8"?>
<dbs>
  <db>
    <mt20id>PF100001</mt20id>
    <prfnm>베토벤 교향곡 전곡 시리즈</prfnm>
    <prfpdfrom>2026.01.05</prfpdfrom>
    <prfpdto>2026.01.10</prfpdto>
    <fcltynm>예술의전당 [콘서트홀]</fcltynm>
    <poster>http://www.kopis.or.kr/upload/poster.jpg</poster>
    <area>서울특별시</area>
    <genrenm>서양음악(클래식)</genrenm>
    <openrun>N</openrun>
    <prfstate>공연예정</prfstate>
  </db>
  <db>
    <mt20id>PF100002</mt20id>
    <prfnm>신년 음악회</prfnm>
  </db>
</dbs>"""

DETAIL_SINGLE_XML = """<dbs><db>
  <mt20id>PF100001</mt20id>
  <prfcast>서울시립교향악단</prfcast>
  <sty>베토벤 교향곡 1번부터 9번까지</sty>
  <entrpsnmP>서울시향</entrpsnmP>
  <pcseguidance>R석 100,000원</pcseguidance>
  <prfage>8세 이상</prfage>
  <dtguidance>화요일 ~ 토요일(19:30)</dtguidance>
  <styurls><styurl>http://img/1.jpg</styurl></styurls>
  <relates><relate><relatenm>NOL티켓</relatenm><relateurl>http://ticket/1</relateurl></relate></relates>
</db></dbs>"""

DETAIL_MULTI_XML = """<dbs><db>
  <mt20id>PF100002</mt20id>
  <styurls><styurl>http://img/1.jpg</styurl><styurl>http://img/2.jpg</styurl></styurls>
  <relates>
    <relate><relatenm>NOL티켓</relatenm><relateurl>http://ticket/1</relateurl></relate>
    <relate><relatenm>예스24</relatenm><relateurl>http://ticket/2</relateurl></relate>
  </relates>
</db></dbs>"""


def test_date_windows_are_at_most_31_days():
    windows = date_windows(date(2026, 1, 1), date(2026, 3, 1))
    assert windows == [("20260101", "20260131"), ("20260201", "20260301")]
    assert date_windows(date(2026, 1, 1), date(2026, 1, 1)) == []


def test_parse_list_records():
    records = parse_records(LIST_XML)
    assert [r["mt20id"] for r in records] == ["PF100001", "PF100002"]
    assert records[0]["fcltynm"] == "예술의전당 [콘서트홀]"
    assert records[1].get("poster") is None


def test_single_and_multiple_nodes_normalize_to_lists():
    single = parse_records(DETAIL_SINGLE_XML)[0]
    multi = parse_records(DETAIL_MULTI_XML)[0]

    assert parse_intro_images(single) == ["http://img/1.jpg"]
    assert parse_intro_images(multi) == ["http://img/1.jpg", "http://img/2.jpg"]
    assert parse_ticket_sites(single) == [{"name": "NOL티켓", "url": "http://ticket/1"}]
    assert [site["name"] for site in parse_ticket_sites(multi)] == ["NOL티켓", "예스24"]
    assert parse_intro_images(None) is None
    assert parse_ticket_sites({"relates": None}) is None


def test_to_row_maps_list_and_detail_fields():
    item = parse_records(LIST_XML)[0]
    row = to_row(item, parse_records(DETAIL_SINGLE_XML)[0])

    assert row["id"] == "PF100001"
    assert row["title"] == "베토벤 교향곡 전곡 시리즈"
    assert row["start_date"] == "2026.01.05" and row["end_date"] == "2026.01.10"
    assert row["venue"] == "예술의전당 [콘서트홀]"
    assert row["open_run"] == "N"
    assert row["synopsis"] == "베토벤 교향곡 1번부터 9번까지"
    assert row["performers"] == "서울시립교향악단"
    assert row["producer"] == "서울시향"
    assert row["schedule"] == "화요일 ~ 토요일(19:30)"
    assert row["intro_images"] == ["http://img/1.jpg"]
    assert row["synced_at"]


def test_to_row_without_detail():
    row = to_row({"mt20id": "PF1", "prfnm": "x"}, None)
    assert row["synopsis"] is None and row["intro_images"] is None and row["ticket_sites"] is None


class FakeKopis:
    def __init__(self, windows):
        self.windows = list(windows)
        self.details = []

    def fetch_window(self, stdate, eddate):
        return self.windows.pop(0) if self.windows else []

    def fetch_detail(self, mt20id):
        self.details.append(mt20id)
        return {"sty": f"{mt20id} 소개"}


def test_sync_dedupes_and_upserts(local_store):
    client = FakeKopis([[{"mt20id": "A", "prfnm": "a"}, {"mt20id": "B", "prfnm": "b"}], [{"mt20id": "A", "prfnm": "a"}]])

    stats = sync(local_store, client, date(2026, 1, 1), date(2026, 2, 15))

    assert stats == {"rows": 2, "upserted": 2, "failed": 0}
    assert client.details == ["A", "B"]
    assert local_store.get_concert("B")["synopsis"] == "B 소개"


class FlakyStore:
    def __init__(self):
        self.batches = []

    def upsert_concerts(self, rows):
        self.batches.append(len(rows))
        if len(self.batches) == 1:
            raise RuntimeError("POST failed: 500")


def test_sync_continues_after_failed_batch():
    items = [{"mt20id": f"PF{i:04d}"} for i in range(150)]
    store = FlakyStore()

    stats = sync(store, FakeKopis([items]), date(2026, 1, 1), date(2026, 1, 20))

    assert store.batches == [100, 50]
    assert stats == {"rows": 150, "upserted": 50, "failed": 100}


def test_fetch_window_pages_until_short_page(monkeypatch):
    pages = {1: [{"mt20id": str(i)} for i in range(100)], 2: [{"mt20id": "last"}]}
    client = kopis_sync.KopisClient(api_key="key", base_url="http://kopis.test/pblprfr")
    requested = []

    def fake_page(stdate, eddate, cpage):
        requested.append(cpage)
        return pages[cpage]

    monkeypatch.setattr(client, "fetch_page", fake_page)

    assert len(client.fetch_window("20260101", "20260131")) == 101
    assert requested == [1, 2]
