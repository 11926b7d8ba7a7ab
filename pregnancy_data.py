"""Pregnancy reference data used to compose reminder copy."""

import math
from datetime import date
from typing import Optional

DEFAULT_WEEK = 12

# week -> (size, fruit, milestone, tip)
DEVELOPMENT_DATA = {
    1: ("0.1mm", "Poppy seed", "Fertilization occurs", "Start taking prenatal vitamins"),
    2: ("0.2mm", "Sesame seed", "Implantation in uterus", "Continue healthy diet"),
    3: ("0.3mm", "Poppy seed", "Neural tube forms", "Take folic acid"),
    4: ("0.4mm", "Sesame seed", "Heart starts beating", "Schedule ultrasound"),
    5: ("0.5mm", "Sesame seed", "Major organs begin forming", "Avoid raw fish"),
    6: ("0.6mm", "Lentil", "Arm and leg buds appear", "Stay hydrated"),
    7: ("1.3cm", "Blueberry", "Brain developing rapidly", "Get adequate rest"),
    8: ("1.6cm", "Kidney bean", "All major organs present", "First trimester screening"),
    9: ("2.3cm", "Grape", "Major organs almost fully formed", "Eat protein-rich foods"),
    10: ("3.1cm", "Kumquat", "Officially a fetus", "Stay active with doctor's approval"),
    11: ("4.1cm", "Lime", "Baby starts moving", "Continue prenatal vitamins"),
    12: ("5.4cm", "Lime", "First trimester complete", "Schedule second trimester screening"),
    13: ("7.4cm", "Lemon", "Bones hardening", "Eat calcium-rich foods"),
    14: ("8.7cm", "Peach", "Facial features defined", "Practice relaxation techniques"),
    15: ("10.1cm", "Apple", "Can make sucking motions", "Stay active with walking"),
    16: ("11.6cm", "Avocado", "Heart pumping 25 quarts daily", "Listen to music together"),
    17: ("13cm", "Pear", "Practicing breathing movements", "Practice deep breathing"),
    18: ("14.2cm", "Sweet potato", "Can hear your voice", "Talk and sing to baby"),
    19: ("15.3cm", "Mango", "Skin becoming less transparent", "Apply stretch mark cream"),
    20: ("16.4cm", "Banana", "Halfway there!", "Start planning nursery"),
    21: ("26.7cm", "Carrot", "Developing sleep cycles", "Establish bedtime routine"),
    22: ("27.8cm", "Coconut", "Taste buds developing", "Eat varied healthy foods"),
    23: ("28.9cm", "Grapefruit", "Can hear sounds from outside", "Avoid loud noises"),
    24: ("30cm", "Corn", "Face almost fully formed", "Take belly photos"),
    25: ("34.6cm", "Cauliflower", "Gaining weight rapidly", "Eat nutrient-dense foods"),
    26: ("35.6cm", "Lettuce", "Eyes opening", "Use gentle lighting"),
    27: ("36.6cm", "Broccoli", "Practicing breathing", "Practice breathing exercises"),
    28: ("37.6cm", "Eggplant", "Can dream now", "Create peaceful environment"),
    29: ("38.6cm", "Butternut squash", "Getting stronger", "Practice gentle exercises"),
    30: ("39.9cm", "Cabbage", "Gaining half pound per week", "Eat small frequent meals"),
    31: ("41.1cm", "Pineapple", "Developing immune system", "Get plenty of rest"),
    32: ("42.4cm", "Squash", "Practicing breathing and sucking", "Practice breastfeeding positions"),
    33: ("43.7cm", "Durian", "Bones hardening", "Continue calcium intake"),
    34: ("45cm", "Cantaloupe", "Gaining weight rapidly", "Monitor weight gain"),
    35: ("46.2cm", "Honeydew", "Almost ready to meet you", "Pack hospital bag"),
    36: ("47.4cm", "Romaine lettuce", "Final stretch", "Finalize birth plan"),
    37: ("48.6cm", "Swiss chard", "Considered full-term soon", "Monitor for labor signs"),
    38: ("49.8cm", "Leek", "Gaining ounce per day", "Stay calm and prepared"),
    39: ("50.7cm", "Mini watermelon", "Almost ready", "Trust your body"),
    40: ("51.2cm", "Small pumpkin", "Ready to meet you", "Welcome your baby!"),
}

CATEGORY_ROTATION = ("nutrition", "exercise", "symptoms")


def calculate_current_week(due_date: Optional[date], today: Optional[date] = None) -> int:
    """Pregnancy week from the due date, clamped to 1..40.

    Without a due date the week defaults to 12.
    """
    if due_date is None:
        return DEFAULT_WEEK
    today = today or date.today()
    days_until_due = (due_date - today).days
    week = 40 - math.ceil(days_until_due / 7)
    return max(1, min(week, 40))


def category_for_day(day: date) -> str:
    """Rotate the baby notification category by day of year."""
    return CATEGORY_ROTATION[day.timetuple().tm_yday % len(CATEGORY_ROTATION)]


def development_message(
    week: int,
    time_of_day: str,
    include_size: bool = True,
    include_milestones: bool = True,
    include_tips: bool = True,
) -> str:
    """Compose the morning or night development update for a week."""
    size, fruit, milestone, tip = DEVELOPMENT_DATA.get(week, DEVELOPMENT_DATA[DEFAULT_WEEK])

    if time_of_day == 'morning':
        lines = [f"Good morning! Here's your baby's development update for Week {week}:", ""]
    else:
        lines = [f"Good night! Here's your baby's development summary for Week {week}:", ""]

    if include_size:
        lines.append(f"Size: {size} ({fruit})")
    if include_milestones:
        lines.append(f"Key Milestone: {milestone}")
    if include_tips:
        lines.append(f"Tip: {tip}")

    return "\n".join(lines)
