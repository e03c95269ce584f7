"""
Panel HTTP surface tests with the store and geocoder replaced by fakes
"""

import requests

from conftest import RecordingHttp, asset, login, make_response
from ekinpanel import settings
from ekinpanel.geocode import GeocodingGateway
from ekinpanel.models import parse_log


def _seed(fake_store):
    fake_store.assets = [
        asset(
            "EKINOTOMASYON-2026-06-0002",
            customer_name="Mehmet Kaya",
            customer_phone="05124445566",
            job_type="ARIZA",
            install_date="2024-01-10",
            warranty_end="2020-01-10",
            latitude=39.9,
            longitude=32.8,
            contract_pdf_path="EKINOTOMASYON-2026-06-0002/contract_1_a.pdf",
        ),
        asset("EKINOTOMASYON-2026-06-0001", customer_name="Ahmet Yılmaz", customer_phone="05321112233", job_type="MONTAJ"),
    ]
    fake_store.logs = [
        parse_log({"id": 11, "uid": "EKINOTOMASYON-2026-06-0002", "action": "ariza", "note": "Motor arızası", "photo_url": "p/1.jpg"}),
        parse_log({"id": 12, "uid": "EKINOTOMASYON-2026-06-0002", "action": "", "note": "Eski kayıt"}),
    ]


def test_protected_pages_redirect_to_login(client):
    for path in ("/", "/records", "/new", "/assets/X", "/assets/X/edit", "/assets/X/new-log"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 303, path
        assert response.headers["location"] == "/login"


def test_login_rejects_bad_password(client):
    response = login(client, password="yanlis")
    assert response.status_code == 401
    assert "Invalid login credentials" in response.text


def test_login_then_home(client, fake_store):
    _seed(fake_store)
    response = login(client)
    assert response.status_code == 303
    assert response.headers["location"] == "/"
    home = client.get("/")
    assert home.status_code == 200
    assert "EKINOTOMASYON-2026-06-0002" in home.text
    assert "GARANTİ BİTTİ" in home.text
    assert "Tarih yok" in home.text
    assert "/records?w=EXPIRED&amp;due=30" in home.text or "/records?w=EXPIRED&due=30" in home.text
    assert client.get("/login", follow_redirects=False).status_code == 303


def test_records_filters(client, fake_store):
    _seed(fake_store)
    login(client)
    response = client.get("/records", params={"q": "0512"})
    assert "EKINOTOMASYON-2026-06-0002" in response.text
    assert "EKINOTOMASYON-2026-06-0001" not in response.text
    response = client.get("/records", params={"job": "MONTAJ", "w": "NODATE", "due": "7"})
    assert "EKINOTOMASYON-2026-06-0001" in response.text
    assert "EKINOTOMASYON-2026-06-0002" not in response.text


def test_store_failure_shown_inline(client, fake_store):
    login(client)
    fake_store.fail_with = "JWT expired"
    response = client.get("/records")
    assert response.status_code == 200
    assert "JWT expired" in response.text


def test_detail_groups_logs(client, fake_store):
    _seed(fake_store)
    login(client)
    response = client.get("/assets/EKINOTOMASYON-2026-06-0002")
    assert response.status_code == 200
    assert "Motor arızası" in response.text
    assert "DİĞER" in response.text
    assert "https://www.google.com/maps?q=39.9,32.8" in response.text
    assert "/assets/EKINOTOMASYON-2026-06-0002/logs/11/photo" in response.text
    # Office users never see the delete action.
    assert "/assets/EKINOTOMASYON-2026-06-0002/delete" not in response.text


def test_unknown_asset_is_404(client):
    login(client)
    response = client.get("/assets/YOK-1")
    assert response.status_code == 404
    assert "Kayıt bulunamadı: YOK-1" in response.text


def test_delete_requires_admin(client, fake_store):
    _seed(fake_store)
    login(client)
    response = client.post("/assets/EKINOTOMASYON-2026-06-0002/delete", follow_redirects=False)
    assert response.status_code == 403
    assert fake_store.deleted == []


def test_admin_delete_cascades(client, fake_store):
    _seed(fake_store)
    login(client, "admin@ekinotomasyon.com.tr", "admin-pass")
    detail = client.get("/assets/EKINOTOMASYON-2026-06-0002")
    assert "/assets/EKINOTOMASYON-2026-06-0002/delete" in detail.text
    response = client.post("/assets/EKINOTOMASYON-2026-06-0002/delete", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/"
    assert fake_store.deleted == ["EKINOTOMASYON-2026-06-0002"]


def test_admin_delete_failure_is_flashed(client, fake_store):
    _seed(fake_store)
    login(client, "admin@ekinotomasyon.com.tr", "admin-pass")
    fake_store.fail_with = "Log silme hatası: permission denied"
    response = client.post("/assets/EKINOTOMASYON-2026-06-0002/delete")
    assert "Log silme hatası: permission denied" in response.text


def test_new_asset_validation(client, fake_store):
    login(client)
    response = client.post("/new", data={"uid_suffix": "", "install_date": "2025-01-01"})
    assert response.status_code == 400
    assert "UID zorunlu. (Sadece sonuna numara girin)" in response.text
    response = client.post("/new", data={"uid_suffix": "12", "install_date": ""})
    assert "Montaj tarihi zorunlu." in response.text
    response = client.post(
        "/new",
        data={"uid_suffix": "12", "install_date": "2025-01-01"},
        files={"contract": ("not.txt", b"hello", "text/plain")},
    )
    assert "Lütfen sadece PDF seç." in response.text
    assert fake_store.created == []


def test_new_asset_created(client, fake_store):
    login(client)
    response = client.post(
        "/new",
        data={
            "uid_suffix": "0042",
            "install_date": "2025-01-01",
            "job_type": "BAKIM",
            "customer_name": " Zeynep ",
            "latitude": "39.95",
            "longitude": "32.86",
            "action": "save",
        },
        files={"contract": ("sozlesme.pdf", b"%PDF-1.4", "application/pdf")},
        follow_redirects=False,
    )
    assert response.status_code == 303
    uid = settings.UID_PREFIX + "0042"
    assert response.headers["location"] == f"/assets/{uid}"
    created = fake_store.created[0]
    assert created["payload"]["uid"] == uid
    assert created["payload"]["customer_name"] == "Zeynep"
    assert created["payload"]["latitude"] == 39.95
    assert created["contract"].filename == "sozlesme.pdf"


def test_new_asset_store_error_is_inline(client, fake_store):
    login(client)
    fake_store.fail_with = 'duplicate key value violates unique constraint "assets_pkey"'
    response = client.post("/new", data={"uid_suffix": "1", "install_date": "2025-01-01"})
    assert response.status_code == 400
    assert "duplicate key value" in response.text


def test_location_search_button_keeps_form(client, fake_store, fake_gateway):
    login(client)
    response = client.post(
        "/new",
        data={"uid_suffix": "5", "install_date": "", "location_query": "Kızılay", "action": "locate"},
    )
    assert response.status_code == 200
    assert 'value="39.9208"' in response.text
    assert fake_gateway.queries == ["Kızılay"]
    assert fake_store.created == []


def test_location_search_without_results_keeps_point(client, fake_gateway):
    login(client)
    fake_gateway.results = []
    response = client.post(
        "/new",
        data={"latitude": "40.5", "longitude": "30.5", "location_query": "yok böyle yer", "action": "locate"},
    )
    assert "Adres bulunamadı. Daha detaylı yazmayı dene." in response.text
    assert 'value="40.5"' in response.text


def test_clear_location_button(client):
    login(client)
    response = client.post("/new", data={"latitude": "40.5", "longitude": "30.5", "action": "clear_location"})
    assert 'id="latitude" value=""' in response.text


def test_edit_saves_changes(client, fake_store):
    _seed(fake_store)
    login(client)
    page = client.get("/assets/EKINOTOMASYON-2026-06-0001/edit")
    assert page.status_code == 200
    assert "Ahmet Yılmaz" in page.text
    response = client.post(
        "/assets/EKINOTOMASYON-2026-06-0001/edit",
        data={"install_date": "2024-02-02", "job_type": "MONTAJ", "customer_name": "Ahmet Y."},
        follow_redirects=False,
    )
    assert response.status_code == 303
    saved = fake_store.saved[0]
    assert saved["uid"] == "EKINOTOMASYON-2026-06-0001"
    assert "uid" not in saved["payload"]
    assert saved["payload"]["customer_name"] == "Ahmet Y."


def test_new_log(client, fake_store):
    _seed(fake_store)
    login(client)
    page = client.get("/assets/EKINOTOMASYON-2026-06-0001/new-log")
    assert '<option value="ARIZA" selected>' in page.text
    response = client.post("/assets/EKINOTOMASYON-2026-06-0001/new-log", data={"action": "ARIZA", "note": "  "})
    assert response.status_code == 400
    assert "Not boş olamaz." in response.text
    response = client.post(
        "/assets/EKINOTOMASYON-2026-06-0001/new-log",
        data={"action": "SATIS", "note": "Ek kumanda verildi"},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert fake_store.inserted_logs == [
        {"uid": "EKINOTOMASYON-2026-06-0001", "action": "SATIS", "note": "Ek kumanda verildi"}
    ]


def test_contract_and_photo_redirect_to_signed_urls(client, fake_store):
    _seed(fake_store)
    login(client)
    response = client.get("/assets/EKINOTOMASYON-2026-06-0002/contract", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"].startswith("https://files.example.test/contracts/")
    response = client.get("/assets/EKINOTOMASYON-2026-06-0002/logs/11/photo", follow_redirects=False)
    assert response.headers["location"] == "https://files.example.test/site-photos/p/1.jpg?token=signed"
    assert client.get("/assets/EKINOTOMASYON-2026-06-0001/contract").status_code == 404
    assert client.get("/assets/EKINOTOMASYON-2026-06-0002/logs/12/photo").status_code == 404


def test_logout_clears_session(client, fake_store):
    login(client)
    response = client.post("/logout", follow_redirects=False)
    assert response.headers["location"] == "/login"
    assert fake_store.signed_out is True
    assert client.get("/", follow_redirects=False).status_code == 303


def test_geocode_endpoint_needs_no_session(client, fake_gateway):
    response = client.get("/api/geocode", params={"q": "Kızılay"})
    assert response.status_code == 200
    assert response.json() == {"results": [{"display_name": "Kızılay, Çankaya, Ankara", "lat": 39.9208, "lon": 32.8541}]}
    assert client.get("/api/geocode", params={"q": "ab"}).json() == {"results": []}
    assert client.get("/api/geocode").json() == {"results": []}


def test_geocode_endpoint_upstream_failure_is_empty(client):
    from ekinpanel import main

    failing = GeocodingGateway("https://nominatim.example.test/search", http=RecordingHttp(requests.ConnectionError("down")))
    main.app.dependency_overrides[main.get_gateway] = lambda: failing
    response = client.get("/api/geocode", params={"q": "Ankara"})
    assert response.status_code == 200
    assert response.json() == {"results": []}
    failing = GeocodingGateway("https://nominatim.example.test/search", http=RecordingHttp(make_response(502, text="bad")))
    main.app.dependency_overrides[main.get_gateway] = lambda: failing
    assert client.get("/api/geocode", params={"q": "Ankara"}).json() == {"results": []}


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_every_page_renders_html(client, fake_store):
    _seed(fake_store)
    page = client.get("/login")
    assert page.status_code == 200
    assert 'name="password"' in page.text
    login(client)
    for path in ("/", "/records", "/new", "/assets/EKINOTOMASYON-2026-06-0002", "/assets/YOK-1"):
        response = client.get(path)
        assert response.status_code in (200, 404), path
        assert "<html" in response.text, path


def test_records_counters_keep_search_and_job(client, fake_store):
    _seed(fake_store)
    login(client)
    response = client.get("/records", params={"q": "kaya", "job": "ARIZA", "due": "15"})
    assert response.status_code == 200
    text = response.text.replace("&amp;", "&")
    assert 'href="/records?q=kaya&job=ARIZA&due=15"' in text
    for bucket in ("EXPIRED", "DUE", "ACTIVE", "NODATE"):
        assert f'href="/records?q=kaya&job=ARIZA&w={bucket}&due=15"' in text


def test_geocode_lookup_uses_direct_search(client, fake_gateway):
    response = client.get("/api/geocode/lookup", params={"q": "Kı"})
    assert response.status_code == 200
    assert response.json() == {"results": [{"display_name": "Kızılay, Çankaya, Ankara", "lat": 39.9208, "lon": 32.8541}]}
    assert fake_gateway.queries == ["Kı"]
    fake_gateway.results = []
    assert client.get("/api/geocode/lookup", params={"q": "yok"}).json() == {"results": []}


def test_geocode_lookup_reports_upstream_failure(client, fake_gateway):
    from ekinpanel.geocode import GeocodeError

    fake_gateway.lookup_error = GeocodeError("Arama servisi hata verdi.")
    response = client.get("/api/geocode/lookup", params={"q": "Ankara"})
    assert response.status_code == 200
    assert response.json() == {"results": [], "error": "Arama servisi hata verdi."}


def test_photo_links_only_redirect_to_the_store(client, fake_store, monkeypatch):
    monkeypatch.setattr(settings, "SUPABASE_URL", "https://proj.supabase.example")
    fake_store.assets = [asset("A-1")]
    fake_store.logs = [
        parse_log({"id": 1, "uid": "A-1", "action": "ARIZA", "note": "n",
                   "photo_url": "https://proj.supabase.example/storage/v1/object/public/site-photos/a.jpg"}),
        parse_log({"id": 2, "uid": "A-1", "action": "ARIZA", "note": "n", "photo_url": "https://evil.example/a.jpg"}),
    ]
    login(client)
    response = client.get("/assets/A-1/logs/1/photo", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"].startswith("https://proj.supabase.example/")
    response = client.get("/assets/A-1/logs/2/photo", follow_redirects=False)
    assert response.status_code == 404
    assert "location" not in response.headers
