# api/urls.py - mounted under /api/v1/
from django.urls import path

from . import views

app_name = 'api'

urlpatterns = [
    # Blood requests
    path('requests/', views.RequestListView.as_view(), name='request-list'),
    path('requests/nearby/', views.NearbyRequestsView.as_view(), name='request-nearby'),
    path('requests/<str:request_id>/', views.RequestDetailView.as_view(), name='request-detail'),
    path('requests/<str:request_id>/cancel/', views.cancel_request, name='request-cancel'),
    path('requests/<str:request_id>/fulfill/', views.fulfill_request, name='request-fulfill'),
    path('requests/<str:request_id>/respond/', views.respond_to_request, name='request-respond'),
    path('requests/<str:request_id>/responses/<str:response_id>/', views.update_response, name='response-update'),

    # Donations
    path('donations/centers/', views.CenterListView.as_view(), name='center-list'),
    path('donations/centers/<str:center_id>/', views.CenterDetailView.as_view(), name='center-detail'),
    path('donations/appointments/', views.schedule_appointment, name='appointment-schedule'),
    path('donations/appointments/upcoming/', views.upcoming_appointments, name='appointment-upcoming'),
    path('donations/appointments/<str:donation_id>/', views.AppointmentDetailView.as_view(), name='appointment-detail'),
    path('donations/appointments/<str:donation_id>/status/', views.appointment_status, name='appointment-status'),
    path('donations/eligibility/', views.eligibility_criteria, name='eligibility-criteria'),
    path('donations/eligibility/check/', views.check_eligibility, name='eligibility-check'),

    # Users (the me/ routes come before users/<id>/)
    path('users/', views.register_profile, name='user-register'),
    path('users/me/', views.MeView.as_view(), name='user-me'),
    path('users/me/notifications/', views.notification_settings, name='user-notifications'),
    path('users/me/devices/', views.register_device, name='user-devices'),
    path('users/me/donations/', views.my_donations, name='user-donations'),
    path('users/me/requests/', views.my_requests, name='user-requests'),
    path('users/me/responses/', views.my_responses, name='user-responses'),
    path('users/eligible-donors/<str:blood_type>/', views.eligible_donors, name='eligible-donors'),
    path('users/<str:user_id>/', views.UserDetailView.as_view(), name='user-detail'),
]
