import asyncio
import json
import os
import uuid

import aio_pika
from faker import Faker

from item_indexer.config import RabbitMQConfig
from item_indexer.consumer.models import Currency, DimensionName, Lang, Unit

# Initialize Faker for generating random data
faker = Faker()

UNITS_BY_DIMENSION = {
    DimensionName.HEIGHT: [Unit.MM, Unit.CM, Unit.M],
    DimensionName.WIDTH: [Unit.MM, Unit.CM, Unit.M],
    DimensionName.DEPTH: [Unit.MM, Unit.CM],
    DimensionName.LENGTH: [Unit.CM, Unit.M],
    DimensionName.DIAMETER: [Unit.MM, Unit.CM],
    DimensionName.THICKNESS: [Unit.MM],
    DimensionName.WEIGHT: [Unit.G, Unit.KG],
    DimensionName.VOLUME: [Unit.CM3, Unit.L, Unit.M3],
}


# Function to generate a fake source item
def generate_fake_item(source="sample-shop"):
    names = faker.random_elements(list(DimensionName), length=3, unique=True)
    item = {
        "source": source,
        "id": str(faker.random_int(min=1, max=1000)),
        "lang": faker.random_element(list(Lang)).value,
        "name": faker.catch_phrase(),
        "description": faker.paragraph(),
        "urls": [faker.url()],
        "categories": faker.words(nb=2),
        "image_urls": [faker.image_url() for _ in range(2)],
        "dimensions": [
            {
                "name": name.value,
                "value": faker.pyfloat(min_value=1, max_value=500, right_digits=1),
                "unit": faker.random_element(UNITS_BY_DIMENSION[name]).value,
            }
            for name in names
        ],
    }

    if faker.boolean(chance_of_getting_true=80):
        item["price"] = {
            "amount": faker.pyfloat(min_value=1, max_value=2000, right_digits=2),
            "currency": faker.random_element(list(Currency)).value,
        }

    return item


# Function to publish items to the items queue
async def produce_messages(num_messages=10, delay=1.0):
    config = RabbitMQConfig.from_env()
    connection = await aio_pika.connect(config.url)

    async with connection:
        channel = await connection.channel()
        await channel.declare_queue(config.queue_name, durable=config.queue_durable)

        for _ in range(num_messages):
            item = generate_fake_item()
            body = json.dumps(item)

            await channel.default_exchange.publish(
                aio_pika.Message(
                    body=body.encode("utf-8"),
                    content_type="application/json",
                    message_id=str(uuid.uuid4()),
                    app_id="sample-producer",
                ),
                routing_key=config.queue_name,
            )
            print(f"Sent message: {body}")

            await asyncio.sleep(delay)


if __name__ == "__main__":
    print("Producing fake item messages...")
    asyncio.run(produce_messages(num_messages=int(os.getenv("NUM_MESSAGES", "10"))))
    print("Finished producing messages.")
