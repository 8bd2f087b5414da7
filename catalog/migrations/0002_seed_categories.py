from django.db import migrations

CATEGORIES = [
    "Immune Booster",
    "Skin Problem",
    "Female Fertility",
    "High Blood Pressure",
    "Diabetes",
    "Tea Range",
    "Weight Loss",
    "Body Range",
]


def seed(apps, schema_editor):
    Category = apps.get_model("catalog", "Category")
    for name in CATEGORIES:
        Category.objects.get_or_create(name=name)


class Migration(migrations.Migration):

    dependencies = [
        ('catalog', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(seed, migrations.RunPython.noop),
    ]
