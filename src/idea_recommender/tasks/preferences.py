"""Background refresh of derived recommendation inputs.

Preference vectors are refreshed per user after new behavior arrives (eventually consistent);
item feature summaries are refreshed on a beat schedule.
"""
from celery import shared_task
from idea_recommender.ml.preferences import refresh_item_features, refresh_user_preferences


@shared_task
def refresh_preference_vector(user_id: str):
    vector = refresh_user_preferences(user_id)
    if vector is None:
        return {"status": "no_behaviors", "user_id": user_id}
    return {
        "status": "ok",
        "user_id": user_id,
        "categories": len(vector.category_weights),
        "communities": len(vector.community_weights),
        "interactions": vector.interaction_count,
    }


@shared_task
def refresh_item_feature_summaries(limit: int | None = None):
    written = refresh_item_features(limit=limit)
    return {"status": "ok" if written else "no_items", "written": written}
