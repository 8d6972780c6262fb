import pytest

from app.medinv.constants import InvalidStockStatus, is_low_stock, normalize_stock_status
from app.medinv.modules.inventory.models import ItemLocation


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("op-voorraad", "op-voorraad"),
        ("Bijna-Op", "bijna-op"),
        (" niet-meer-aanwezig ", "niet-meer-aanwezig"),
        ("laag", "bijna-op"),
        ("op", "niet-meer-aanwezig"),
        ("niet-op-voorraad", "niet-meer-aanwezig"),
        ("voorraad", "op-voorraad"),
        ("", "op-voorraad"),
        (None, "op-voorraad"),
    ],
)
def test_normalize_stock_status(raw, expected):
    assert normalize_stock_status(raw) == expected


def test_unknown_status_is_rejected():
    with pytest.raises(InvalidStockStatus, match="half-vol"):
        normalize_stock_status("half-vol")


def test_low_stock_flag_follows_status():
    assert not is_low_stock("op-voorraad")
    assert is_low_stock("bijna-op")
    assert is_low_stock("niet-meer-aanwezig")

    loc = ItemLocation(item_id=1, ambulance_post_id="hilversum", cabinet_id="A")
    loc.set_stock_status("niet-meer-aanwezig")
    assert loc.is_low_stock is True
    loc.set_stock_status("op-voorraad")
    assert loc.is_low_stock is False
