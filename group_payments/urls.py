"""
URL configuration for the group payments app.

Routes:
    - split-payments/                      POST
    - split-payments/upcoming/             GET
    - split-payments/{id}/                 GET
    - split-payments/{id}/cancel/          POST
    - payments/{id}/pay/                   POST
    - payments/{id}/confirm/               POST
    - payments/{id}/retry/                 POST
    - pay/{token}/                         POST

All routes are prefixed with /api/v1/group-payments/ when included in the main URLconf.
"""

from django.urls import path

from group_payments.views import (
    IndividualPaymentConfirmView,
    IndividualPaymentPayView,
    IndividualPaymentRetryView,
    PaymentLinkView,
    SplitPaymentCancelView,
    SplitPaymentCreateView,
    SplitPaymentDetailView,
    UpcomingDeadlinesView,
)

app_name = "group_payments"

urlpatterns = [
    # Split payments
    path("split-payments/", SplitPaymentCreateView.as_view(), name="split-payment-create"),
    path(
        "split-payments/upcoming/",
        UpcomingDeadlinesView.as_view(),
        name="split-payment-upcoming",
    ),
    path(
        "split-payments/<uuid:split_payment_id>/",
        SplitPaymentDetailView.as_view(),
        name="split-payment-detail",
    ),
    path(
        "split-payments/<uuid:split_payment_id>/cancel/",
        SplitPaymentCancelView.as_view(),
        name="split-payment-cancel",
    ),
    # Individual payments
    path(
        "payments/<uuid:payment_id>/pay/",
        IndividualPaymentPayView.as_view(),
        name="payment-pay",
    ),
    path(
        "payments/<uuid:payment_id>/confirm/",
        IndividualPaymentConfirmView.as_view(),
        name="payment-confirm",
    ),
    path(
        "payments/<uuid:payment_id>/retry/",
        IndividualPaymentRetryView.as_view(),
        name="payment-retry",
    ),
    # Payment links
    path("pay/<str:token>/", PaymentLinkView.as_view(), name="payment-link"),
]
