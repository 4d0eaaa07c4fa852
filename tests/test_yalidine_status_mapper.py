"""Carrier status text -> order status mapping tests"""

import logging

import pytest

from models import OrderStatus
from services.yalidine_status_mapper import YalidineStatusMapper


class TestStatusText:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Retourné", OrderStatus.CANCELLED),
            ("RETOURNÉ", OrderStatus.CANCELLED),
            ("  retourne  ", OrderStatus.CANCELLED),
            ("Retour vers vendeur", OrderStatus.CANCELLED),
            ("Annulé", OrderStatus.CANCELLED),
            ("Livré au client", OrderStatus.DELIVERED),
            ("Livré", OrderStatus.DELIVERED),
            ("LIVRE", OrderStatus.DELIVERED),
            ("Tentative échouée", OrderStatus.PROCESSING),
            ("Echec de livraison", OrderStatus.PROCESSING),
            ("Non livré", OrderStatus.PROCESSING),
            ("En préparation", OrderStatus.PROCESSING),
            ("Pas encore expédié", OrderStatus.PROCESSING),
            ("Expédié", OrderStatus.SHIPPED),
            ("Sorti en livraison", OrderStatus.SHIPPED),
            ("En transit", OrderStatus.SHIPPED),
            ("Centre", OrderStatus.SHIPPED),
            ("Vers Wilaya", OrderStatus.SHIPPED),
            ("En attente du client", OrderStatus.SHIPPED),
        ],
    )
    def test_french_status_text(self, text, expected):
        assert YalidineStatusMapper.map_status(text, "parcel_status_updated") == expected

    @pytest.mark.parametrize(
        "code,expected",
        [
            ("pending", OrderStatus.PROCESSING),
            ("picked_up", OrderStatus.SHIPPED),
            ("in_transit", OrderStatus.SHIPPED),
            ("out_for_delivery", OrderStatus.SHIPPED),
            ("delivered", OrderStatus.DELIVERED),
            ("returned", OrderStatus.CANCELLED),
            ("failed_delivery", OrderStatus.PROCESSING),
            ("cancelled", OrderStatus.CANCELLED),
        ],
    )
    def test_machine_codes(self, code, expected):
        assert YalidineStatusMapper.map_status(code) == expected


class TestEventTypeOverrides:
    def test_deleted_always_cancelled(self):
        assert YalidineStatusMapper.map_status("Livré", "parcel_deleted") == OrderStatus.CANCELLED

    def test_created_is_shipped(self):
        assert YalidineStatusMapper.map_status(None, "parcel_created") == OrderStatus.SHIPPED


class TestUnknownStatus:
    def test_unknown_text_is_none_and_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert YalidineStatusMapper.map_status("Alerte météo", "parcel_status_updated") is None

        assert "YALIDINE_UNKNOWN_STATUS" in caplog.text

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_text_is_none(self, text):
        assert YalidineStatusMapper.map_status(text, "parcel_status_updated") is None
