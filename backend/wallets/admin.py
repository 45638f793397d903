from django.contrib import admin
from wallets.models import Wallet, WalletTransaction


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ["owner", "kind", "balance", "currency", "updated_at"]
    list_filter = ["kind"]
    search_fields = ["owner__username"]
    # Balances change only through the ledger
    readonly_fields = ["balance", "updated_at"]


@admin.register(WalletTransaction)
class WalletTransactionAdmin(admin.ModelAdmin):
    list_display = ["wallet", "type", "amount", "balance_before", "balance_after", "reference_type", "reference_id", "created_at"]
    list_filter = ["type", "reference_type"]
    search_fields = ["wallet__owner__username", "reference_id"]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
