import io
import os

import pytest

from nova_library.models.database import get_db


def _create_book(client, category_id, title, author="Some Author", **fields):
    payload = {"category_id": category_id, "title": title, "author": author}
    payload.update(fields)
    response = client.post("/api/books", json=payload)
    assert response.status_code == 201
    return response.get_json()["data"]["book_id"]


# ==================== Search ====================

@pytest.mark.parametrize("query", ["", "a", " b ", "  "])
def test_search_rejects_short_queries(client, query):
    response = client.get("/api/books/search", query_string={"q": query})
    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is False
    assert body["data"] == []
    assert "2 characters" in body["message"]


def test_search_returns_envelope_with_image_urls(client, app_category_id):
    _create_book(client, app_category_id, "Python Tricks", image_path="/images/books/py.jpg")
    _create_book(client, app_category_id, "Dune", author="Frank Herbert")

    body = client.get("/api/books/search?q=py").get_json()
    assert body["success"] is True
    assert body["count"] == 1
    book = body["data"][0]
    assert book["title"] == "Python Tricks"
    assert book["image_url"] == "/public/img/books/py.jpg"


def test_search_default_image_url(client, app_category_id):
    _create_book(client, app_category_id, "Dune")
    book = client.get("/api/books/search?q=dune").get_json()["data"][0]
    assert book["image_url"] == "/public/img/books/default-book.jpg"


def test_search_is_ordered_and_capped(client, app_category_id):
    for i in range(60):
        _create_book(client, app_category_id, f"Book {i:02d}")

    body = client.get("/api/books/search?q=book").get_json()
    titles = [b["title"] for b in body["data"]]
    assert body["count"] == 20
    assert titles == sorted(titles)

    assert client.get("/api/books/search?q=book&limit=5").get_json()["count"] == 5
    assert client.get("/api/books/search?q=book&limit=500").get_json()["count"] == 50
    assert client.get("/api/books/search?q=book&limit=abc").get_json()["count"] == 20
    assert client.get("/api/books/search?q=book&limit=-3").get_json()["count"] == 0


def test_search_failure_is_reported_generically(app, client):
    with app.app_context():
        get_db().executescript("DROP TABLE books;")

    body = client.get("/api/books/search?q=dune").get_json()
    assert body["success"] is False
    assert body["data"] == []
    assert "sqlite" not in body["message"].lower()
    assert "no such table" not in body["message"].lower()


# ==================== Catalog ====================

def test_create_book_validation_error(client, app_category_id):
    response = client.post("/api/books", json={"category_id": app_category_id, "title": "No author"})
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_create_book_with_cover_upload(app, client, app_category_id):
    data = {
        "category_id": str(app_category_id),
        "title": "Covered",
        "author": "Someone",
        "cover": (io.BytesIO(b"jpeg bytes"), "cover.jpg", "image/jpeg"),
    }
    response = client.post("/api/books", data=data, content_type="multipart/form-data")
    assert response.status_code == 201
    book_id = response.get_json()["data"]["book_id"]

    book = client.get(f"/api/books/{book_id}").get_json()["data"]
    assert book["image_path"].startswith("public/img/books/book_")
    assert book["image_path"].endswith(".jpg")
    assert book["on_loan"] is False

    asset = client.get("/" + book["image_path"])
    assert asset.status_code == 200
    assert asset.data == b"jpeg bytes"


def test_create_book_rejects_bad_cover(client, app_category_id):
    data = {
        "category_id": str(app_category_id),
        "title": "Covered",
        "author": "Someone",
        "cover": (io.BytesIO(b"GIF89a"), "cover.gif", "image/gif"),
    }
    response = client.post("/api/books", data=data, content_type="multipart/form-data")
    assert response.status_code == 400
    assert "Invalid file type" in response.get_json()["message"]


def _stored_covers(app):
    folder = app.config["UPLOAD_FOLDER"]
    return os.listdir(folder) if os.path.isdir(folder) else []


def test_rejected_book_leaves_no_cover_behind(app, client, app_category_id):
    data = {
        "category_id": str(app_category_id),
        "title": "No author",
        "cover": (io.BytesIO(b"jpeg bytes"), "cover.jpg", "image/jpeg"),
    }
    response = client.post("/api/books", data=data, content_type="multipart/form-data")
    assert response.status_code == 400
    assert "author" in response.get_json()["message"]
    assert _stored_covers(app) == []


def test_failed_insert_removes_stored_cover(app, client, app_category_id):
    with app.app_context():
        get_db().executescript("DROP TABLE books;")

    data = {
        "category_id": str(app_category_id),
        "title": "Covered",
        "author": "Someone",
        "cover": (io.BytesIO(b"jpeg bytes"), "cover.jpg", "image/jpeg"),
    }
    response = client.post("/api/books", data=data, content_type="multipart/form-data")
    assert response.status_code == 500
    assert _stored_covers(app) == []


def test_rejected_update_leaves_no_cover_behind(app, client, app_category_id):
    book_id = _create_book(client, app_category_id, "Old")
    data = {
        "category_id": str(app_category_id),
        "title": "",
        "author": "Someone",
        "cover": (io.BytesIO(b"jpeg bytes"), "cover.jpg", "image/jpeg"),
    }
    response = client.put(f"/api/books/{book_id}", data=data, content_type="multipart/form-data")
    assert response.status_code == 400
    assert _stored_covers(app) == []


def test_oversized_request_body_is_refused(app, client, app_category_id):
    data = {
        "category_id": str(app_category_id),
        "title": "Huge",
        "author": "Someone",
        "cover": (io.BytesIO(b"x" * (app.config["MAX_CONTENT_LENGTH"] + 1)), "cover.jpg", "image/jpeg"),
    }
    response = client.post("/api/books", data=data, content_type="multipart/form-data")
    assert response.status_code == 413
    assert _stored_covers(app) == []


def test_update_keeps_existing_cover(client, app_category_id):
    book_id = _create_book(client, app_category_id, "Old", image_path="public/img/books/old.jpg")
    response = client.put(f"/api/books/{book_id}", json={
        "category_id": app_category_id, "title": "New", "author": "Someone",
    })
    assert response.status_code == 200

    book = client.get(f"/api/books/{book_id}").get_json()["data"]
    assert book["title"] == "New"
    assert book["image_path"] == "public/img/books/old.jpg"


def test_missing_book_is_404(client):
    assert client.get("/api/books/999").status_code == 404
    assert client.put("/api/books/999", json={}).status_code == 404
    assert client.delete("/api/books/999").status_code == 400


def test_list_books_and_categories(client, app_category_id):
    _create_book(client, app_category_id, "Dune")
    books = client.get("/api/books").get_json()["data"]
    assert [b["title"] for b in books] == ["Dune"]
    assert client.get(f"/api/books?category={app_category_id}").get_json()["data"][0]["title"] == "Dune"
    assert client.get("/api/books?available=1").get_json()["data"][0]["title"] == "Dune"

    categories = client.get("/api/categories").get_json()["data"]
    assert categories[0]["category_name"] == "Science"


def test_popular_books_limit_is_clamped(client, app_category_id):
    for title in ("Dune", "Emma", "Ulysses"):
        book_id = _create_book(client, app_category_id, title)
        assert client.post("/api/loans", json={"book_id": book_id, "user_id": 1}).status_code == 201

    assert len(client.get("/api/books/popular").get_json()["data"]) == 3
    assert len(client.get("/api/books/popular?limit=2").get_json()["data"]) == 2
    assert client.get("/api/books/popular?limit=-1").get_json()["data"] == []
    assert len(client.get("/api/books/popular?limit=abc").get_json()["data"]) == 3


# ==================== Lending ====================

def test_loan_requires_valid_input(client, app_category_id):
    book_id = _create_book(client, app_category_id, "Dune")
    assert client.post("/api/loans", json={"book_id": book_id}).status_code == 400
    assert client.post("/api/loans", json={"book_id": book_id, "user_id": 1,
                                           "duration_days": 0}).status_code == 400
    assert client.post("/api/loans", json={"book_id": 999, "user_id": 1}).status_code == 404


def test_loan_uses_session_user(client, app_category_id):
    book_id = _create_book(client, app_category_id, "Dune")
    with client.session_transaction() as session:
        session["user_id"] = 21

    response = client.post("/api/loans", json={"book_id": book_id})
    assert response.status_code == 201

    loans = client.get("/api/me/loans").get_json()["data"]
    assert loans[0]["user_id"] == 21
    assert client.get(f"/api/books/{book_id}").get_json()["data"]["on_loan"] is True


def test_me_endpoints_require_login(client):
    response = client.get("/api/me/loans")
    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_loan_lifecycle_end_to_end(client, app_category_id, clock):
    book_id = _create_book(client, app_category_id, "The Tide", author="A")

    book = client.get(f"/api/books/{book_id}").get_json()["data"]
    assert (book["title"], book["author"], book["category_id"]) == ("The Tide", "A", app_category_id)

    found = client.get("/api/books/search?q=ti").get_json()["data"]
    assert [b["book_id"] for b in found] == [book_id]

    response = client.post("/api/loans", json={"book_id": book_id, "user_id": 5, "duration_days": 7})
    loan_id = response.get_json()["data"]["loan_id"]
    loan = client.get("/api/loans").get_json()["data"][0]
    assert (loan["loan_date"], loan["due_date"]) == ("2024-03-01", "2024-03-08")

    clock.advance(17)
    overdue = client.get("/api/loans/overdue").get_json()["data"]
    assert overdue[0]["loan_id"] == loan_id
    assert overdue[0]["days_overdue"] == 10
    assert overdue[0]["penalty_amount"] == 20000

    returned = client.post(f"/api/loans/{loan_id}/return").get_json()
    assert returned["data"]["penalty_amount"] == 20000
    assert client.post(f"/api/loans/{loan_id}/return").status_code == 404

    with client.session_transaction() as session:
        session["user_id"] = 5
    assert client.get("/api/me/penalty").get_json()["data"]["total_penalty"] == 20000
    stats = client.get("/api/me/stats").get_json()["data"]
    assert stats["total_loans"] == 1
    assert stats["returned_loans"] == 1

    history = client.get("/api/loans?all=1").get_json()["data"]
    assert history[0]["is_overdue"] is False
    popular = client.get("/api/books/popular").get_json()["data"]
    assert popular[0]["title"] == "The Tide"
