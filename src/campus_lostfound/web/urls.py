"""
URL configuration for the lost & found API.
"""

from django.urls import path

from . import views

urlpatterns = [
    # Claims
    path("api/claims", views.claims_collection, name="claims"),
    path("api/claims/item/<int:item_id>", views.claims_for_item, name="claims_for_item"),
    path("api/claims/<int:claim_id>", views.claim_detail, name="claim_detail"),
    path("api/claims/<int:claim_id>/verify", views.verify_claim, name="verify_claim"),
    path("api/claims/<int:claim_id>/schedule", views.schedule_pickup, name="schedule_pickup"),
    path("api/claims/<int:claim_id>/pickup", views.record_pickup, name="record_pickup"),
    path("api/claims/<int:claim_id>/cancel", views.cancel_claim, name="cancel_claim"),
    # Matches
    path("api/matches/lost/<int:item_id>", views.matches_for_lost_item, name="matches_lost"),
    path("api/matches/found/<int:item_id>", views.matches_for_found_item, name="matches_found"),
    path("api/matches/my-lost-items", views.my_lost_item_matches, name="my_lost_item_matches"),
    path(
        "api/matches/saved/<str:item_type>/<int:item_id>",
        views.saved_matches,
        name="saved_matches",
    ),
    path("api/matches/run-auto-match", views.run_auto_match, name="run_auto_match"),
    path("api/matches/<int:match_id>/accept", views.accept_match, name="accept_match"),
    path("api/matches/<int:match_id>/reject", views.reject_match, name="reject_match"),
    path("api/matches/<int:match_id>/status", views.update_match_status, name="match_status"),
]
