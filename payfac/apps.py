from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class PayfacConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'payfac'
    verbose_name = _("PayFac settlements")
