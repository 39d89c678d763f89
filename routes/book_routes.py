from fastapi import APIRouter, Depends, Query
from typing import Optional

from dataBase import get_db
from dependencies import get_current_user_id, get_request_lifecycle
from errors import NotFoundError, UnauthorizedError, ValidationError
from models.book_models import BookStatus, PostBookModel, UpdateBookModel
from serializers import serialize_book
from services import RequestLifecycle
from utils import utcnow, to_object_id

router = APIRouter(prefix="/books", tags=["books"])


@router.post("/", status_code=201)
async def add_new_book(
    book: PostBookModel,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    now = utcnow()
    book_data = book.model_dump(mode="json")
    book_data.update({
        "status": BookStatus.AVAILABLE.value,
        "owner_id": user_id,
        "requests": [],
        "accepted_request": None,
        "donated_to": None,
        "created_at": now,
        "updated_at": now,
    })
    result = await db.books.insert_one(book_data)
    created_book = await db.books.find_one({"_id": result.inserted_id})
    return {
        "message": "Book added successfully",
        "book": serialize_book(created_book),
    }


@router.get("/")
async def get_all_books(
    status: Optional[BookStatus] = None,
    owner_id: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db=Depends(get_db),
):
    query = {}
    if status:
        query["status"] = status.value
    if owner_id:
        query["owner_id"] = owner_id

    books_cursor = db.books.find(query).sort("created_at", -1).skip(skip).limit(limit)
    books = [serialize_book(book) async for book in books_cursor]
    total_books = await db.books.count_documents(query)

    return {
        "message": "Books fetched successfully",
        "total_books": total_books,
        "returned_books": len(books),
        "skip": skip,
        "limit": limit,
        "books": books,
    }


@router.get("/{book_id}")
async def get_book_details(book_id: str, db=Depends(get_db)):
    book = await db.books.find_one({"_id": to_object_id(book_id, "book")})
    if not book:
        raise NotFoundError("book", book_id)
    return serialize_book(book)


@router.put("/{book_id}")
async def update_book(
    book_id: str,
    updated_data: UpdateBookModel,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    oid = to_object_id(book_id, "book")
    book = await db.books.find_one({"_id": oid}, {"owner_id": 1})
    if not book:
        raise NotFoundError("book", book_id)
    if book.get("owner_id") != user_id:
        raise UnauthorizedError("Only the book owner can edit it", "NOT_OWNER")

    # Lifecycle fields (status, requests, owner) are never writable here
    update_fields = updated_data.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    if not update_fields:
        raise ValidationError("No fields provided to update.")
    update_fields["updated_at"] = utcnow()

    await db.books.update_one({"_id": oid}, {"$set": update_fields})
    updated_book = await db.books.find_one({"_id": oid})
    return {
        "message": "Book updated successfully.",
        "book": serialize_book(updated_book),
    }


@router.post("/{book_id}/request")
async def request_book(
    book_id: str,
    user_id: str = Depends(get_current_user_id),
    lifecycle: RequestLifecycle = Depends(get_request_lifecycle),
):
    book = await lifecycle.request(book_id, user_id)
    return {"message": "Book requested", "book": serialize_book(book)}


@router.post("/{book_id}/withdraw")
async def withdraw_request(
    book_id: str,
    user_id: str = Depends(get_current_user_id),
    lifecycle: RequestLifecycle = Depends(get_request_lifecycle),
):
    book = await lifecycle.withdraw(book_id, user_id)
    return {"message": "Request withdrawn", "book": serialize_book(book)}


@router.post("/{book_id}/accept/{request_id}")
async def accept_request(
    book_id: str,
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    lifecycle: RequestLifecycle = Depends(get_request_lifecycle),
):
    book = await lifecycle.accept(book_id, request_id, user_id)
    return {"message": "Request accepted and chat started", "book": serialize_book(book)}


@router.post("/{book_id}/reject/{target_user_id}")
async def reject_request(
    book_id: str,
    target_user_id: str,
    user_id: str = Depends(get_current_user_id),
    lifecycle: RequestLifecycle = Depends(get_request_lifecycle),
):
    book = await lifecycle.reject(book_id, target_user_id, user_id)
    return {"message": "Request rejected", "book": serialize_book(book)}


@router.post("/{book_id}/mark-donated")
async def mark_donated(
    book_id: str,
    user_id: str = Depends(get_current_user_id),
    lifecycle: RequestLifecycle = Depends(get_request_lifecycle),
):
    book = await lifecycle.mark_donated(book_id, user_id)
    return {"message": "Book marked as donated", "book": serialize_book(book)}
