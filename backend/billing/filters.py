"""FilterSet definitions for credit endpoints."""
from __future__ import annotations

import django_filters

from billing.models import CreditTransaction, CreditValidity


class CreditTransactionFilter(django_filters.FilterSet):
    kind = django_filters.CharFilter(field_name="kind", lookup_expr="iexact")
    credit_type = django_filters.CharFilter(field_name="credit_type", lookup_expr="iexact")
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = CreditTransaction
        fields = ["kind", "credit_type"]


class CreditValidityFilter(django_filters.FilterSet):
    credit_type = django_filters.CharFilter(field_name="credit_type", lookup_expr="iexact")
    expired = django_filters.BooleanFilter(field_name="expired")
    expires_before = django_filters.DateTimeFilter(field_name="expires_at", lookup_expr="lte")

    class Meta:
        model = CreditValidity
        fields = ["credit_type", "expired"]
