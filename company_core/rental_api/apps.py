from django.apps import AppConfig


class RentalApiConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'rental_api'
    verbose_name = 'Rental API'
