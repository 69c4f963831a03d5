import os

import pandas as pd
import numpy as np
from datetime import datetime, timezone, timedelta

# A small neighbourhood store's catalogue (INR)
CATALOG = [
    ("P-001", "Toned Milk 1L", 62.0, 120),
    ("P-002", "Whole Wheat Atta 5kg", 289.0, 40),
    ("P-003", "Basmati Rice 1kg", 145.0, 60),
    ("P-004", "Tomatoes 1kg", 38.0, 200),
    ("P-005", "Onions 1kg", 42.0, 200),
    ("P-006", "Paneer 200g", 95.0, 30),
    ("P-007", "Eggs (12)", 84.0, 80),
    ("P-008", "Bananas (6)", 48.0, 100),
    ("P-009", "Sunflower Oil 1L", 165.0, 50),
    ("P-010", "Toor Dal 1kg", 172.0, 45),
]

FIRST_NAMES = ["Aarav", "Diya", "Ishaan", "Kavya", "Rohan", "Meera", "Arjun", "Sana", "Vikram", "Priya"]
AREAS = ["Indiranagar", "Koramangala", "HSR Layout", "Jayanagar", "Whitefield", "Malleshwaram"]
SLOTS = ["07:00-09:00", "09:00-11:00", "17:00-19:00", "19:00-21:00"]


def _repo_path(filename):
    # next to the simulation, which reads from the repo root
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return os.path.join(base_dir, filename)


def generate_catalog(output_file="catalog_generated.csv"):
    df = pd.DataFrame(CATALOG, columns=["product_id", "name", "price", "stock_quantity"])
    df.to_csv(_repo_path(output_file), index=False)
    print(f"✅ Saved {len(df)} products to '{output_file}'")
    return df


def generate_mock_orders(num_orders=200, num_customers=40, output_file="checkout_orders_generated.csv"):
    """
    Generates checkout submissions shaped like the storefront's POST /orders body,
    flattened to one row per order line. Rows sharing a checkout_id form one order.
    A few rows are deliberately broken (too many units, unknown product) so the
    placement validation is exercised too.
    """
    customers = []
    for customer_index in range(num_customers):
        customers.append({
            "customer_id": f"cust-{customer_index + 1:03d}",
            "name": f"{np.random.choice(FIRST_NAMES)} {chr(65 + customer_index % 26)}.",
            "phone": f"+91 9{np.random.randint(100000000, 999999999)}",
            "address": f"{np.random.randint(1, 400)}, {np.random.choice(AREAS)}, Bengaluru",
        })

    data = []
    today = datetime.now(timezone.utc).date()

    for order_index in range(num_orders):
        customer = customers[np.random.randint(0, num_customers)]
        slot_day = today + timedelta(days=int(np.random.choice([0, 1], p=[0.7, 0.3])))
        slot = f"{slot_day.isoformat()} {np.random.choice(SLOTS)}"
        payment = np.random.choice(["cash", "upi", "prepaid"], p=[0.5, 0.35, 0.15])

        line_count = np.random.randint(1, 5)
        product_indices = np.random.choice(len(CATALOG), size=line_count, replace=False)
        for product_index in product_indices:
            product_id = CATALOG[product_index][0]
            quantity = int(np.random.randint(1, 4))

            # ~3% of lines are invalid on purpose
            roll = np.random.random()
            if roll < 0.015:
                quantity = 25
            elif roll < 0.03:
                product_id = "P-999"

            data.append({
                "checkout_id": f"chk_{order_index + 1:05d}",
                "customer_id": customer["customer_id"],
                "customer_name": customer["name"],
                "customer_phone": customer["phone"],
                "address": customer["address"],
                "slot": slot,
                "instructions": np.random.choice(["", "Ring the bell", "Leave at the gate", "Call on arrival"]),
                "payment_method": payment,
                "product_id": product_id,
                "quantity": quantity,
            })

    df = pd.DataFrame(data)
    df.to_csv(_repo_path(output_file), index=False)
    print(f"✅ Generated {num_orders} checkouts ({len(df)} lines) and saved to '{output_file}'")

    print("\nTop 5 Products by units ordered:")
    units = df.groupby("product_id")["quantity"].sum().sort_values(ascending=False).head(5)
    for product_id, count in units.items():
        print(f"  {product_id}: {count} units")
    return df


if __name__ == "__main__":
    generate_catalog()
    generate_mock_orders(num_orders=200, num_customers=40)
