# rental_api/urls.py
from django.urls import include, path
from rest_framework.authtoken.views import obtain_auth_token
from rest_framework.routers import DefaultRouter

from .views import InvoiceViewSet, PaymentViewSet, RentalOrderViewSet


router = DefaultRouter()
router.register(r'rental-orders', RentalOrderViewSet, basename='rental-order')
router.register(r'invoices', InvoiceViewSet, basename='invoice')
router.register(r'payments', PaymentViewSet, basename='payment')

urlpatterns = [
    path('', include(router.urls)),
    path('auth/token/', obtain_auth_token, name='api-token'),
]
