import logging

from fastapi import APIRouter, Depends

from dataBase import get_db
from dependencies import get_current_user_id
from errors import NotFoundError, ValidationError
from models.book_models import BookStatus, RequestStatus
from models.user_models import UserProfileModel
from serializers import serialize_book, serialize_user
from utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def get_badges(donate_count: int) -> list:
    if donate_count >= 10:
        return ["Gold Donor"]
    if donate_count >= 5:
        return ["Silver Donor"]
    if donate_count >= 1:
        return ["Bronze Donor"]
    return []


@router.put("/me")
async def upsert_my_profile(
    profile: UserProfileModel,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_db),
):
    """Create or update the profile of the verified caller."""
    now = utcnow()
    await db.users.update_one(
        {"_id": user_id},
        {
            "$set": {**profile.model_dump(mode="json"), "updated_at": now},
            "$setOnInsert": {"notifications": [], "created_at": now},
        },
        upsert=True,
    )
    user = await db.users.find_one({"_id": user_id})
    return {"message": "Profile saved", "user": serialize_user(user)}


@router.get("/{user_id}/profile")
async def get_user_profile(user_id: str, db=Depends(get_db)):
    user = await db.users.find_one({"_id": user_id}, {"notifications": 0})
    if not user:
        raise NotFoundError("user", user_id)

    donated_books = [
        serialize_book(book)
        async for book in db.books.find({"owner_id": user_id, "status": BookStatus.DONATED.value})
    ]
    requested_books = [
        serialize_book(book)
        async for book in db.books.find({
            "requests": {
                "$elemMatch": {
                    "user_id": user_id,
                    "status": {"$in": [RequestStatus.PENDING.value, RequestStatus.ACCEPTED.value]},
                }
            }
        })
    ]

    return {
        **serialize_user(user),
        "donated_books": donated_books,
        "requested_books": requested_books,
        "badges": get_badges(len(donated_books)),
        "followers": await _people(db, user.get("followers", [])),
        "following": await _people(db, user.get("following", [])),
    }


async def _people(db, user_ids: list) -> list:
    found = {
        user["_id"]: user
        async for user in db.users.find({"_id": {"$in": user_ids}}, {"name": 1, "photo": 1})
    }
    return [
        {"id": uid, "name": found[uid].get("name", ""), "photo": found[uid].get("photo", "")}
        for uid in user_ids if uid in found
    ]


async def _ensure_follow_target(db, me: str, other: str, verb: str) -> None:
    if me == other:
        raise ValidationError(f"You can't {verb} yourself", "SELF_FOLLOW")
    if not await db.users.find_one({"_id": other}, {"_id": 1}):
        raise NotFoundError("user", other)


@router.post("/{user_id}/follow")
async def follow_user(user_id: str, me: str = Depends(get_current_user_id), db=Depends(get_db)):
    await _ensure_follow_target(db, me, user_id, "follow")
    # Both sides are sets, so repeating a follow changes nothing
    await db.users.update_one(
        {"_id": me},
        {"$addToSet": {"following": user_id}, "$setOnInsert": {"created_at": utcnow()}},
        upsert=True,
    )
    await db.users.update_one({"_id": user_id}, {"$addToSet": {"followers": me}})
    logger.info("User followed", extra={"user_id": me})

    my_doc = await db.users.find_one({"_id": me}, {"following": 1})
    return {"message": "Followed", "following": my_doc.get("following", [])}


@router.post("/{user_id}/unfollow")
async def unfollow_user(user_id: str, me: str = Depends(get_current_user_id), db=Depends(get_db)):
    await _ensure_follow_target(db, me, user_id, "unfollow")
    await db.users.update_one({"_id": me}, {"$pull": {"following": user_id}})
    await db.users.update_one({"_id": user_id}, {"$pull": {"followers": me}})
    logger.info("User unfollowed", extra={"user_id": me})

    my_doc = await db.users.find_one({"_id": me}, {"following": 1}) or {}
    return {"message": "Unfollowed", "following": my_doc.get("following", [])}
