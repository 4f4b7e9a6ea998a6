"""
Built-in catalogue data.

FALLBACK_MENU is shown to diners when the menu collection is empty or
unreachable. BULK_MENU is the restaurant's standard card, loaded by the
chef's bulk import (single price, no portions).
"""

from tableside.schemas import DEFAULT_IMAGE_PATH


def _unsplash(photo: str) -> str:
    return f"https://images.unsplash.com/{photo}?auto=format&fit=crop&q=80&w=800"


FALLBACK_MENU: list[dict] = [
    {
        "id": "f1", "name": "Roasted Papad", "mr_name": "भाजलेला पापड",
        "description": "Crispy roasted lentil crackers",
        "mr_description": "कुरकुरीत भाजलेला डाळीचा पापड",
        "price": {"full": 45}, "spiceLevel": "Medium", "noPortion": True,
        "category": "starter", "image": _unsplash("photo-1626602411112-10742f9a3af8"),
    },
    {
        "id": "f2", "name": "Paneer Tikka", "mr_name": "पनीर टिक्का",
        "description": "Grilled marinated cottage cheese cubes",
        "mr_description": "मसाल्यात मुरवलेले ग्रील्ड पनीर",
        "price": {"full": 270, "half": 150}, "spiceLevel": "Medium", "noPortion": False,
        "category": "starter", "image": _unsplash("photo-1567184109411-40821c416e50"),
    },
    {
        "id": "f3", "name": "Chapati", "mr_name": "चपाती",
        "description": "Soft whole wheat flatbread",
        "mr_description": "मऊ गव्हाची चपाती",
        "price": {"full": 30}, "spiceLevel": "Sweet", "noPortion": True,
        "category": "indian-bread", "image": _unsplash("photo-1601050690597-df0568f70950"),
    },
    {
        "id": "f4", "name": "Butter Naan", "mr_name": "बटर नान",
        "description": "Leavened bread with butter",
        "mr_description": "मऊ आणि बटर लावलेला नान",
        "price": {"full": 50}, "spiceLevel": "Sweet", "noPortion": True,
        "category": "indian-bread", "image": _unsplash("photo-1585934580020-0086c5966455"),
    },
    {
        "id": "f5", "name": "Veg. Fried Rice", "mr_name": "व्हेज फ्राइड राइस",
        "description": "Standard stir-fried rice with vegetables",
        "mr_description": "भाज्यांसोबत परतलेला भात",
        "price": {"full": 210, "half": 120}, "spiceLevel": "Medium", "noPortion": False,
        "category": "rice", "image": _unsplash("photo-1512058560366-cd2429003314"),
    },
    {
        "id": "f6", "name": "Dal Fry", "mr_name": "डाळ फ्राय",
        "description": "Tempered yellow lentils with spices",
        "mr_description": "फोडणी दिलेली पिवळी डाळ",
        "price": {"full": 160, "half": 90}, "spiceLevel": "Medium", "noPortion": False,
        "category": "dal", "image": _unsplash("photo-1546833999-b9f581a1996d"),
    },
    {
        "id": "f7", "name": "Mix Raita", "mr_name": "मिक्स रायता",
        "description": "Yogurt with chopped vegetables",
        "mr_description": "दही आणि बारीक चिरलेल्या भाज्यांचे मिश्रण",
        "price": {"full": 95}, "spiceLevel": "Sweet", "noPortion": True,
        "category": "raita", "image": _unsplash("photo-1626074353765-517a681e40be"),
    },
    {
        "id": "f8", "name": "Veg. Hakka Noodles", "mr_name": "व्हेज हक्का नूडल्स",
        "description": "Wok-tossed noodles with crunchy veggies",
        "mr_description": "नूडल्स आणि कुरकुरीत भाज्यांचे मिश्रण",
        "price": {"full": 220, "half": 130}, "spiceLevel": "Medium", "noPortion": False,
        "category": "noodles", "image": _unsplash("photo-1585032226651-759b368d7246"),
    },
    {
        "id": "f9", "name": "Vanilla Ice Cream", "mr_name": "व्हॅनिला आईसक्रीम",
        "description": "Classic vanilla flavored frozen dessert",
        "mr_description": "क्लासिक व्हॅनिला फ्लेवरचे आईसक्रीम",
        "price": {"full": 65}, "spiceLevel": "Sweet", "noPortion": True,
        "category": "ice-cream", "image": _unsplash("photo-1497034825429-c343d7c6a68f"),
    },
]


# (name, price, category)
BULK_MENU: list[tuple[str, int, str]] = [
    # Starters
    ("Roasted Papad", 45, "starter"),
    ("Masala Papad", 70, "starter"),
    ("Finger Chips", 110, "starter"),
    ("Veg. Manchurian", 200, "starter"),
    ("Gobi Manchurian", 200, "starter"),
    ("Lemon Gobi Manchurian", 220, "starter"),
    ("Chinese Bhel", 190, "starter"),
    ("Potato Pops", 200, "starter"),
    ("Harabhara Kabab", 220, "starter"),
    ("Veg 65", 200, "starter"),
    ("Cheese Corn Nuggets", 200, "starter"),
    ("Veg. Crispy", 220, "starter"),
    ("Baby Corn Crispy", 220, "starter"),
    ("Baby Corn Chilly", 220, "starter"),
    ("Paneer Pakoda", 270, "starter"),
    ("Paneer Tikka", 270, "starter"),
    ("Paneer Crispy", 270, "starter"),
    ("Paneer Pahadi Kabab", 270, "starter"),
    ("Paneer Malai Kabab", 270, "starter"),
    ("Paneer Manchurian", 270, "starter"),
    ("Paneer Chilly", 270, "starter"),
    # Indian bread
    ("Chapati", 30, "indian-bread"),
    ("Bhakari", 35, "indian-bread"),
    ("Roti", 35, "indian-bread"),
    ("Butter Roti", 40, "indian-bread"),
    ("Naan", 45, "indian-bread"),
    ("Butter Naan", 50, "indian-bread"),
    ("Paratha", 45, "indian-bread"),
    ("Butter Paratha", 50, "indian-bread"),
    ("Garlic Naan", 60, "indian-bread"),
    ("Butter Garlic Naan", 70, "indian-bread"),
    ("Cheese Garlic Naan", 120, "indian-bread"),
    ("Aaloo Paratha", 110, "indian-bread"),
    # Rice
    ("Veg. Fried Rice", 210, "rice"),
    ("Singapori Fried Rice", 210, "rice"),
    ("Schezwan Fried Rice", 210, "rice"),
    ("Triple Schezwan Fried Rice", 240, "rice"),
    # Dal
    ("Dal Fry", 160, "dal"),
    ("Dal Tadka", 180, "dal"),
    ("Dal Kolhapuri", 190, "dal"),
    ("Butter Dal Fry", 200, "dal"),
    # Raita
    ("Green Salad", 80, "raita"),
    ("Mix Raita", 95, "raita"),
    ("Pineapple Raita", 100, "raita"),
    # Noodles
    ("Veg. Hakka Noodles", 220, "noodles"),
    ("Veg. Schezwan", 220, "noodles"),
    ("Veg. Singapori", 220, "noodles"),
    ("Veg. American Chopsuey", 240, "noodles"),
    # Ice creams
    ("Vanilla / Mango / Pista", 65, "ice-cream"),
    ("Butter Scotch", 70, "ice-cream"),
    ("Mataka Kulfi", 80, "ice-cream"),
    ("Cassatta", 80, "ice-cream"),
    ("Fruit Salad with Ice Cream", 140, "ice-cream"),
]


def bulk_menu_documents() -> list[dict]:
    """Store documents for BULK_MENU, in card order."""
    return [
        {
            "name": name,
            "price": {"full": price},
            "noPortion": True,
            "category": category,
            "image": DEFAULT_IMAGE_PATH,
        }
        for name, price, category in BULK_MENU
    ]
